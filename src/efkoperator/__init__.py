"""Kubernetes operator for Elasticsearch, Fluent Bit, and Kibana stacks."""
