import uuid
from dataclasses import dataclass
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import delete as sa_delete, func, update as sa_update
from sqlmodel import Session, SQLModel, col, select

from app.core.errors import ValidationFailedError
from app.utils.dates import utcnow

ModelT = TypeVar("ModelT", bound=SQLModel)


@dataclass
class Page:
    """Pagination window. Defaults: first page, 20 rows, newest first."""
    page: int = 1
    limit: int = 20
    sort_by: str = "created_at"
    sort_desc: bool = True

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


class Repository(Generic[ModelT]):
    """
    Generic data access over one SQLModel table.

    `update_where` is the conditional single-row write used by every state
    transition: the row must still match the expected values, otherwise
    nothing is written and the caller gets False.
    """

    def __init__(self, session: Session, model: Type[ModelT]):
        self.session = session
        self.model = model

    # ==========================================================================
    # READ
    # ==========================================================================

    def get_by_id(self, obj_id: uuid.UUID) -> Optional[ModelT]:
        return self.session.get(self.model, obj_id)

    def get_by(self, **filters: Any) -> Optional[ModelT]:
        statement = select(self.model)
        for field, value in filters.items():
            statement = statement.where(getattr(self.model, field) == value)
        return self.session.exec(statement).first()

    def find(self, *conditions, page: Optional[Page] = None) -> List[ModelT]:
        statement = select(self.model)
        if conditions:
            statement = statement.where(*conditions)
        if page is not None:
            if page.sort_by not in self.model.model_fields:
                raise ValidationFailedError(f"Cannot sort by '{page.sort_by}'.")
            sort_column = col(getattr(self.model, page.sort_by))
            statement = statement.order_by(
                sort_column.desc() if page.sort_desc else sort_column.asc()
            ).offset(page.offset).limit(page.limit)
        return list(self.session.exec(statement).all())

    def list(self, page: Optional[Page] = None, **filters: Any) -> List[ModelT]:
        conditions = [getattr(self.model, k) == v for k, v in filters.items()
                      if v is not None]
        return self.find(*conditions, page=page or Page())

    def count(self, *conditions, **filters: Any) -> int:
        statement = select(func.count()).select_from(self.model)
        all_conditions = list(conditions) + [
            getattr(self.model, k) == v for k, v in filters.items() if v is not None
        ]
        if all_conditions:
            statement = statement.where(*all_conditions)
        return self.session.exec(statement).one()

    # ==========================================================================
    # WRITE
    # ==========================================================================

    def create(self, obj: ModelT) -> ModelT:
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def update(self, obj: ModelT) -> ModelT:
        """Whole-row save of an already loaded object."""
        if hasattr(obj, "updated_at"):
            obj.updated_at = utcnow()
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def update_where(self, obj_id: uuid.UUID, values: Dict[str, Any], *conditions) -> bool:
        """
        Conditional update of one row: `id == obj_id AND all(conditions)`.
        Returns True when exactly one row matched and was written.
        """
        values = dict(values)
        if "updated_at" in self.model.model_fields and "updated_at" not in values:
            values["updated_at"] = utcnow()

        statement = (
            sa_update(self.model)
            .where(self.model.id == obj_id, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.connection().execute(statement)
        self.session.commit()

        if result.rowcount != 1:
            return False

        # Drop the stale identity-map copy so the next read sees the new row
        obj = self.session.get(self.model, obj_id)
        if obj is not None:
            self.session.refresh(obj)
        return True

    def delete(self, obj: ModelT) -> None:
        self.session.delete(obj)
        self.session.commit()

    def delete_where(self, *conditions) -> int:
        statement = sa_delete(self.model).where(*conditions)
        result = self.session.connection().execute(statement)
        self.session.commit()
        return result.rowcount


def reject_nulls(values: Dict[str, Any], fields) -> None:
    """Partial updates may leave a NOT NULL column out, but never clear it."""
    for field in fields:
        if field in values and values[field] is None:
            raise ValidationFailedError(f"'{field}' cannot be empty.")
