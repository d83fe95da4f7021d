# marketplace/api/responses.py


def ok(data) -> dict:
    """Success envelope; failures are shaped by the handlers in api.errors."""
    return {"success": True, "data": data}
