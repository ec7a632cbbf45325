"""Paginated list envelopes built from service ``list`` queries."""

from pydantic import BaseModel

from app.schemas.common import ListResponse


def list_response(items: list, limit: int, offset: int, schema: type[BaseModel]) -> ListResponse:
    rows = [schema.model_validate(item) for item in items]
    return ListResponse[schema](items=rows, count=len(rows), limit=limit, offset=offset)


class ListResponseMixin:
    """Adds ``list_response`` to services that define ``list`` and ``read_schema``.

    ``limit`` and ``offset`` are taken from keyword arguments or, failing
    that, from the last two positional arguments, matching the ``list``
    signatures.
    """

    read_schema: type[BaseModel]

    @classmethod
    def list_response(cls, db, *args, **kwargs) -> ListResponse:
        if "limit" in kwargs and "offset" in kwargs:
            limit = kwargs["limit"]
            offset = kwargs["offset"]
            items = cls.list(db, *args, **kwargs)
        else:
            if len(args) < 2:
                raise ValueError("limit and offset are required for list responses")
            *list_args, limit, offset = args
            items = cls.list(db, *list_args, limit=limit, offset=offset, **kwargs)
        return list_response(items, limit, offset, cls.read_schema)
