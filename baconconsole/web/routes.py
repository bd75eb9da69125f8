"""API endpoints for the web interface."""

from fastapi import APIRouter, Depends, HTTPException, Request

from ..services.console import Console

router = APIRouter()


def get_console(request: Request) -> Console:
    return request.app.state.console


@router.get("/console")
async def get_console_state(console: Console = Depends(get_console)):
    """Current view, node status snapshot and balances."""
    return console.snapshot()


@router.get("/notifications")
async def list_notifications(console: Console = Depends(get_console)):
    """Outstanding notifications, oldest first."""
    return [n.model_dump(mode="json") for n in console.bus.notifications]


@router.delete("/notifications/{notification_id}")
async def dismiss_notification(notification_id: int, console: Console = Depends(get_console)):
    if not console.bus.dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"dismissed": notification_id}


@router.get("/health")
async def health_check(console: Console = Depends(get_console)):
    """Health check endpoint."""
    return {"status": "healthy", "connected": console.poller.connected}
