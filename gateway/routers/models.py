from fastapi import APIRouter, Depends

from gateway.dependencies import get_dispatcher
from gateway.models.schemas import ModelInfo, ModelListResponse
from gateway.services.dispatcher import Dispatcher

router = APIRouter(prefix="/models", tags=["models"])


@router.get("", response_model=ModelListResponse)
async def list_models(dispatcher: Dispatcher = Depends(get_dispatcher)):
    """Every registered model with its rates and whether its provider has credentials."""
    models = [
        ModelInfo(**entry, configured=dispatcher.is_configured(entry["provider"]))
        for entry in dispatcher.registry.list_models()
    ]
    return ModelListResponse(models=models)
