"""Org hierarchy index built once per snapshot."""

from compliance_engine.hierarchy.index import OrgHierarchyIndex, OrgNode, OrgNodeRecord

__all__ = ["OrgHierarchyIndex", "OrgNode", "OrgNodeRecord"]
