import math
from typing import Any, List, Optional

from fastapi import Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

import config


def success(data: Any = None, message: str = "Success", status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": True, "message": message, "data": data}),
    )


def error(message: str, status_code: int = 400, errors: Optional[List[str]] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "errors": errors or []},
    )


def paginated(items: List[Any], total: int, page: int, per_page: int,
              message: str = "Success") -> JSONResponse:
    return JSONResponse(content=jsonable_encoder({
        "success": True,
        "message": message,
        "data": items,
        "pagination": {
            "total": total,
            "page": page,
            "perPage": per_page,
            "totalPages": math.ceil(total / per_page) if per_page else 0,
        },
    }))


class Pagination:
    """Query parameters shared by every paginated listing"""

    def __init__(
        self,
        page: int = Query(1, ge=1),
        per_page: int = Query(config.ITEMS_PER_PAGE, ge=1, le=100, alias="perPage"),
    ):
        self.page = page
        self.per_page = per_page
