from __future__ import annotations

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.orm import Session

T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Shared persistence helpers. Scheduler rows are never deleted, so no delete()."""

    def __init__(self, session: Session, model: Type[T]) -> None:
        self.session = session
        self.model = model

    def create(self, obj: T, *, commit: bool = True) -> T:
        self.session.add(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        return obj

    def create_many(self, objs: Sequence[T], *, commit: bool = True) -> list[T]:
        self.session.add_all(objs)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return list(objs)

    def get_by_id(self, id_: Any, *, for_update: bool = False) -> Optional[T]:
        if for_update:
            stmt = (
                select(self.model)
                .where(self.model.id == id_)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            return self.session.execute(stmt).scalars().first()
        return self.session.get(self.model, id_)

    def count(self, *criteria: Any) -> int:
        stmt = select(func.count()).select_from(self.model).where(*criteria)
        return int(self.session.execute(stmt).scalar_one())
