"""
Helpers for reading nodes and scope configurations out of flowchart documents.

A flowchart looks like::

    {
        "client_id": "c1",
        "is_active": true,
        "nodes": [
            {
                "id": "n1",
                "label": "Plant A",
                "details": {
                    "department": "Operations",
                    "location": "Pune",
                    "scope_details": [{"scope_identifier": "S1-diesel", ...}]
                }
            }
        ]
    }
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from emission_engine.api.store import DocumentStore
from emission_engine.models.emission_data import ScopeConfiguration

logger = logging.getLogger(__name__)


def find_node(flowchart: Optional[Dict[str, Any]], node_id: str) -> Optional[Dict[str, Any]]:
    if not flowchart:
        return None
    for node in flowchart.get('nodes') or []:
        if node.get('id') == node_id:
            return node
    return None


def find_scope_detail(node: Optional[Dict[str, Any]], scope_identifier: str) -> Optional[Dict[str, Any]]:
    if not node:
        return None
    for detail in (node.get('details') or {}).get('scope_details') or []:
        if detail.get('scope_identifier') == scope_identifier:
            return detail
    return None


def to_scope_configuration(detail: Dict[str, Any]) -> Optional[ScopeConfiguration]:
    try:
        return ScopeConfiguration.model_validate(detail)
    except ValidationError as e:
        logger.warning(f"Invalid scope configuration {detail.get('scope_identifier')}: {e}")
        return None


def resolve_scope_configuration(
    store: DocumentStore,
    client_id: str,
    node_id: str,
    scope_identifier: str,
) -> Optional[ScopeConfiguration]:
    """
    Find the scope configuration for a node, process flowchart first

    Returns:
        The configuration, or None when neither flowchart defines the scope
    """
    for process in (True, False):
        chart = store.get_active_flowchart(client_id, process=process)
        detail = find_scope_detail(find_node(chart, node_id), scope_identifier)
        if detail is not None:
            return to_scope_configuration(detail)
    return None


def node_context(node: Dict[str, Any]) -> Dict[str, Any]:
    """Label, department and location of a node with 'Unknown' fallbacks"""
    details = node.get('details') or {}
    return {
        'node_id': node.get('id'),
        'node_label': node.get('label') or node.get('id') or 'Unknown',
        'department': details.get('department') or 'Unknown',
        'location': details.get('location') or 'Unknown',
    }
