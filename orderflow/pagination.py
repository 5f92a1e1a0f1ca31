from dataclasses import dataclass

from fastapi import HTTPException, Query

from orderflow.config import settings


@dataclass(frozen=True)
class Pagination:
    skip: int
    size: int

    @property
    def page(self) -> int:
        return self.skip // self.size + 1


def paginate(
    page: int = Query(default=1, ge=1),
    size: int | None = Query(default=None, ge=1),
) -> Pagination:
    """Turn page/size query params into store offsets."""
    size = size or settings.default_page_size
    if size > settings.max_page_size:
        raise HTTPException(status_code=422, detail=f"size must be <= {settings.max_page_size}")
    return Pagination(skip=(page - 1) * size, size=size)
