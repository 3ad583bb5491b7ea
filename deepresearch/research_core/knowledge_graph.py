from __future__ import annotations

import uuid
from typing import Any

from deepresearch.llm_client import TextGenerator
from deepresearch.models.research import Fact, KnowledgeNode, KnowledgeRelationship
from deepresearch.research_core.json_utils import extract_json_object
from deepresearch.services import logger as log_service
from deepresearch.services.prompt_store import render_prompt
from deepresearch.services.research_store import ResearchStore

GRAPH_FACT_LIMIT = 50
GRAPH_TOKEN_BUDGET = 3000
DEFAULT_IMPORTANCE = 0.5
DEFAULT_STRENGTH = 0.7
DEFAULT_ENTITY_TYPE = "concept"
DEFAULT_RELATION = "related_to"


async def request_graph(
    generator: TextGenerator,
    session_id: str,
    facts: list[Fact],
) -> dict[str, Any] | None:
    if not facts:
        return None
    facts_text = "\n".join(f.statement for f in facts[:GRAPH_FACT_LIMIT])
    prompt = render_prompt("knowledge_graph.extract", facts=facts_text)
    try:
        raw = await generator.generate(prompt, max_tokens=GRAPH_TOKEN_BUDGET, caller="knowledge_graph")
    except Exception as e:
        log_service.log_event(
            event_type="knowledge_graph_failed",
            message="Knowledge graph extraction failed",
            session_id=session_id,
            error=str(e),
        )
        return None
    return extract_json_object(raw)


async def build_knowledge_graph(
    store: ResearchStore,
    generator: TextGenerator,
    session_id: str,
    facts: list[Fact],
) -> list[KnowledgeNode]:
    """Persist the entities and relationships delegated for the top facts.

    Nodes are keyed by entity name for this call only; a repeated name maps
    to its last node. Edges with an unresolved endpoint are dropped.
    """
    data = await request_graph(generator, session_id, facts)
    if not data:
        return []

    nodes: dict[str, KnowledgeNode] = {}
    by_entity: dict[str, str] = {}
    for item in data.get("nodes") or []:
        if not isinstance(item, dict):
            continue
        entity = str(item.get("entity") or "").strip()
        if not entity:
            continue
        properties = item.get("properties")
        node = await store.add_knowledge_node(
            KnowledgeNode(
                id=str(uuid.uuid4()),
                session_id=session_id,
                entity=entity,
                entity_type=str(item.get("type") or DEFAULT_ENTITY_TYPE),
                properties=properties if isinstance(properties, dict) else {},
                importance=DEFAULT_IMPORTANCE,
            )
        )
        nodes[node.id] = node
        by_entity[entity] = node.id

    dropped = 0
    for item in data.get("relationships") or []:
        if not isinstance(item, dict):
            continue
        source_id = by_entity.get(str(item.get("source") or "").strip())
        target_id = by_entity.get(str(item.get("target") or "").strip())
        if not source_id or not target_id:
            dropped += 1
            continue
        relationship = await store.add_knowledge_relationship(
            KnowledgeRelationship(
                id=str(uuid.uuid4()),
                session_id=session_id,
                source_id=source_id,
                target_id=target_id,
                relation_type=str(item.get("type") or DEFAULT_RELATION),
                strength=DEFAULT_STRENGTH,
            )
        )
        nodes[source_id].relationships.append(relationship)

    if dropped:
        log_service.log_event(
            event_type="knowledge_graph_edges_dropped",
            message="Dropped relationships with unresolved endpoints",
            session_id=session_id,
            dropped=dropped,
        )
    return list(nodes.values())
