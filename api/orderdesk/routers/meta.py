from fastapi import APIRouter

from ..statuses import STATUS_DISPLAY, OrderStatus

router = APIRouter()


@router.get("/statuses")
def list_statuses():
    return {
        "statuses": [
            {"value": s.value, "label": STATUS_DISPLAY[s].label, "color": STATUS_DISPLAY[s].color}
            for s in OrderStatus
        ]
    }
