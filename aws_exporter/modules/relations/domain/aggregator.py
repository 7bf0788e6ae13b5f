from collections.abc import Iterable, Sequence
from typing import Protocol

import structlog
from prometheus_client.core import Metric

from aws_exporter.modules.resources.domain.resource import ResourceRelation
from aws_exporter.shared.core.constants import RESOURCE_RELATION_METRIC
from aws_exporter.shared.core.metric_provider import build_family

logger = structlog.get_logger()


class RelationBuilder(Protocol):
    @property
    def relations(self) -> frozenset[ResourceRelation]:
        """Edges from the builder's last refresh."""
        ...


class ResourceRelationExporter:
    """
    Publishes the union of every builder's cached edges as
    `aws_resource_relation` samples. Reads whatever the builders last
    produced and never triggers or waits for a builder refresh.
    """

    def __init__(self, builders: Sequence[RelationBuilder]):
        self.builders = tuple(builders)
        self._metrics: list[Metric] = []

    def current_relations(self) -> set[ResourceRelation]:
        relations: set[ResourceRelation] = set()
        for builder in self.builders:
            relations |= builder.relations
        return relations

    async def update(self) -> None:
        relations = self.current_relations()
        samples = [
            (relation.labels(), 1.0)
            for relation in sorted(
                relations, key=lambda r: sorted(r.labels().items())
            )
        ]
        self._metrics = (
            [build_family(RESOURCE_RELATION_METRIC, samples)] if samples else []
        )
        logger.info("resource_relations_exported", relations=len(samples))

    def collect(self) -> Iterable[Metric]:
        return self._metrics
