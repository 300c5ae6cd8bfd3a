"""
TemplateStore -- the ordered inspection checklist.

Responsibility:
    Read access to active checklist points in template order, plus the
    administrative operations that maintain the template.  Points are
    deactivated rather than deleted so existing sessions keep their
    references.

Architecture position:
    Kernel > Services -- flush-only.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select

from inspex_kernel.domain.actor import Actor
from inspex_kernel.domain.dtos import InspectionPointRecord
from inspex_kernel.domain.workflow import Operation, require_role
from inspex_kernel.exceptions import InspectionPointNotFoundError
from inspex_kernel.logging_config import get_logger
from inspex_kernel.models.inspection import InspectionPoint
from inspex_kernel.services.base import BaseService

logger = get_logger("services.template_store")


class TemplateStore(BaseService):
    """Checklist template access."""

    def list_inspection_points(self) -> list[InspectionPointRecord]:
        """Active points ordered by order_index."""
        return [p.to_dto() for p in self.active_points()]

    def active_points(self) -> list[InspectionPoint]:
        return list(
            self.session.execute(
                select(InspectionPoint)
                .where(InspectionPoint.is_active.is_(True))
                .order_by(InspectionPoint.order_index, InspectionPoint.name)
            ).scalars()
        )

    def get_point(self, point_id: UUID) -> InspectionPoint:
        point = self.session.get(InspectionPoint, point_id)
        if point is None:
            raise InspectionPointNotFoundError(str(point_id))
        return point

    def add_point(
        self,
        actor: Actor,
        name: str,
        description: str,
        order_index: int,
    ) -> InspectionPointRecord:
        require_role(actor, Operation.MANAGE_CHECKLIST)
        point = InspectionPoint(
            name=name,
            description=description,
            order_index=order_index,
            is_active=True,
        )
        self.session.add(point)
        self.session.flush()
        logger.info(
            "inspection_point_added",
            extra={"point_id": str(point.id), "point_name": name, "order_index": order_index},
        )
        return point.to_dto()

    def deactivate_point(self, actor: Actor, point_id: UUID) -> InspectionPointRecord:
        require_role(actor, Operation.MANAGE_CHECKLIST)
        point = self.get_point(point_id)
        point.is_active = False
        self.session.flush()
        logger.info("inspection_point_deactivated", extra={"point_id": str(point_id)})
        return point.to_dto()

    def seed_default_points(self, points: Iterable[Mapping[str, object]]) -> int:
        """
        Insert any named points that do not exist yet.

        Idempotent: points are matched by name.  Returns the number created.
        """
        existing = set(self.session.execute(select(InspectionPoint.name)).scalars())
        created = 0
        for index, spec in enumerate(points, start=1):
            name = str(spec["name"])
            if name in existing:
                continue
            self.session.add(
                InspectionPoint(
                    name=name,
                    description=str(spec.get("description", "")),
                    order_index=int(spec.get("order_index", index)),
                    is_active=True,
                )
            )
            existing.add(name)
            created += 1
        self.session.flush()
        if created:
            logger.info("inspection_points_seeded", extra={"points_created": created})
        return created
