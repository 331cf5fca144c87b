"""
Pydantic schemas for request validation
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, Any, Union


# Base model for camelCase aliasing
class CamelCaseModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ExecuteRequest(CamelCaseModel):
    question_id: Union[str, int]
    code: str
    group_id: Optional[str] = None


class SubmitRequest(CamelCaseModel):
    question_id: Union[str, int]
    code: str
    # JSON text or an array of row objects; checked by the comparator
    expected_output: Any = Field(...)
    group_id: Optional[str] = None


class ResetRequest(CamelCaseModel):
    question_id: Union[str, int]
    group_id: Optional[str] = None


class SeedRequest(CamelCaseModel):
    seed_sql: str
    group_id: Optional[str] = None


class SchemaRequest(CamelCaseModel):
    question_id: Optional[Union[str, int]] = None
    group_id: Optional[str] = None
