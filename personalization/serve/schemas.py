from pydantic import BaseModel, Field
from typing import List, Dict, Any, Optional


class CompatibleRequest(BaseModel):
    component_type: str = Field(..., alias="componentType")
    current_components: List[Dict[str, Any]] = Field(
        default_factory=list, alias="currentComponents"
    )
    limit: int = Field(10, gt=0, le=100)
    budget_min: Optional[float] = Field(None, ge=0, alias="budgetMin")
    budget_max: Optional[float] = Field(None, ge=0, alias="budgetMax")
    brand_preferences: Optional[Dict[str, float]] = Field(
        None, alias="brandPreferences"
    )

    model_config = {"populate_by_name": True}


class BuildSuggestionsRequest(BaseModel):
    current_config: Dict[str, Any] = Field(default_factory=dict, alias="currentConfig")
    category_id: str = Field(..., min_length=1, alias="categoryId")
    limit: int = Field(6, gt=0, le=100)

    model_config = {"populate_by_name": True}


class BatchAnalyzeRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1, alias="userIds")
    batch_size: int = Field(10, gt=0, le=100, alias="batchSize")
    force: bool = False

    model_config = {"populate_by_name": True}


class ClearCacheResponse(BaseModel):
    deleted: int
    prefix: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str  # exception class name, e.g. "NotFoundError"
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
