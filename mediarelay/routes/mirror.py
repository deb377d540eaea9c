from fastapi import APIRouter, Request

from mediarelay.handlers import handle_mirror_request

mirror_router = APIRouter()


@mirror_router.get("/{subpath:path}", name="mirror_proxy")
async def mirror_proxy(request: Request, subpath: str):
    """
    Forward a metadata API request to the configured Piped instances, first success wins.
    """
    query_params = [(k, v) for k, v in request.query_params.multi_items() if k != "api_password"]
    return await handle_mirror_request(subpath, query_params)
