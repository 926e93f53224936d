"""Persistent store adapters."""

from deal_matcher.adapters.storage.yaml_store import YamlStore

__all__ = ["YamlStore"]
