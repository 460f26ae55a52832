"""
Request and response models for the flag service HTTP surface.
"""

from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class SuccessResponse(BaseModel, Generic[T]):
    """Envelope of every successful response."""
    status: str = "success"
    data: T


class EvaluationRequest(BaseModel):
    """SDK request to evaluate one flag."""
    model_config = ConfigDict(populate_by_name=True)

    flag_key: str = Field(..., alias="flagKey", min_length=1, description="Flag key")
    context: Dict[str, Any] = Field(default_factory=dict, description="Evaluation context")


class ManagementEvaluationRequest(BaseModel):
    """Management API request to evaluate a flag in an environment."""
    environment: str = Field(..., min_length=1, description="Environment name")
    context: Dict[str, Any] = Field(default_factory=dict, description="Evaluation context")


class FlagEvaluationResponse(BaseModel):
    """Evaluated flag value."""
    key: str
    value: Any = None


class RuleDocument(BaseModel):
    """Rule as submitted by the management API."""
    model_config = ConfigDict(extra="forbid")

    type: str
    name: Optional[str] = None
    priority: int = Field(0, ge=0)
    value: Any = None


class VariationDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str = Field(..., min_length=1)
    value: Any
    description: Optional[str] = None


class EnvironmentDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    enabled: bool = False
    rules: List[RuleDocument] = Field(default_factory=list)
    value: Any = None
    variations: List[VariationDocument] = Field(default_factory=list)
    default_variation: Optional[str] = Field(None, alias="defaultVariation")


class FlagDocument(BaseModel):
    """Flag definition as submitted by the management API."""
    model_config = ConfigDict(extra="forbid")

    key: Optional[str] = Field(None, description="Must match the key in the path when given")
    name: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    type: str = "BOOLEAN"
    tags: List[str] = Field(default_factory=list)
    environments: Dict[str, EnvironmentDocument] = Field(default_factory=dict)

    def to_document(self, key: str) -> Dict[str, Any]:
        # exclude_unset keeps "no value given" distinct from an explicit null
        data = self.model_dump(by_alias=True, exclude_unset=True)
        data["key"] = key
        return data


class DefaultVariationRequest(BaseModel):
    key: str = Field(..., min_length=1, description="Variation key")


class ToggleRequest(BaseModel):
    enabled: bool = Field(..., description="Whether the flag is served in the environment")
