"""
Wire schemas for payment gateway traffic.

Metadata attached to a transaction at initialize time comes back verbatim on
verify and on webhooks. It is discriminated into one of two purchase kinds
here, before anything touches the ledger.
"""
import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from academy.exceptions import ValidationFailed

SUCCESS_STATUSES = ('success',)
# 'abandoned' is still payable on the gateway side
FAILURE_STATUSES = ('failed', 'reversed')


def _as_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class _Metadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CoursePurchase(_Metadata):
    course_id: str = Field(alias='courseId', min_length=1)
    user_id: str = Field(alias='userId', min_length=1)
    include_all_sections: bool = Field(False, alias='includeAllSections')
    paid_section_ids: Optional[List[str]] = Field(None, alias='paidSectionIds')
    purchase_type: Literal['COURSE_ONLY', 'FULL_ACCESS'] = Field('COURSE_ONLY', alias='purchaseType')

    @field_validator('course_id', 'user_id', mode='before')
    @classmethod
    def coerce_ids(cls, value):
        return _as_str(value)

    @field_validator('paid_section_ids', mode='before')
    @classmethod
    def coerce_section_ids(cls, value):
        if value is None:
            return None
        if not isinstance(value, list):
            raise ValueError('paidSectionIds must be a list')
        return [_as_str(v) for v in value]


class SectionPurchase(_Metadata):
    section_id: str = Field(alias='sectionId', min_length=1)
    course_id: str = Field(alias='courseId', min_length=1)
    user_id: str = Field(alias='userId', min_length=1)
    enrollment_id: str = Field(alias='enrollmentId', min_length=1)
    purchase_type: Literal['SECTION'] = Field('SECTION', alias='purchaseType')

    @field_validator('section_id', 'course_id', 'user_id', 'enrollment_id', mode='before')
    @classmethod
    def coerce_ids(cls, value):
        return _as_str(value)


PaymentMetadata = Union[CoursePurchase, SectionPurchase]


def parse_payment_metadata(raw: Any) -> PaymentMetadata:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise ValidationFailed('Payment metadata is not valid JSON')
    if not isinstance(raw, dict):
        raise ValidationFailed('Payment metadata missing')

    purchase_type = raw.get('purchaseType')
    if purchase_type == 'SECTION' or (purchase_type is None and 'sectionId' in raw):
        model = SectionPurchase
    elif purchase_type in ('COURSE_ONLY', 'FULL_ACCESS') or (purchase_type is None and 'courseId' in raw):
        model = CoursePurchase
    else:
        raise ValidationFailed('Unknown payment metadata shape')

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        raise ValidationFailed(f'Invalid payment metadata: {e.error_count()} error(s)')


class InitializedTransaction(BaseModel):
    authorization_url: str
    reference: str
    access_code: Optional[str] = None


class VerifiedTransaction(BaseModel):
    reference: str
    status: str
    amount: int = 0
    metadata: Any = None

    @property
    def succeeded(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def is_final(self) -> bool:
        return self.status in SUCCESS_STATUSES or self.status in FAILURE_STATUSES


class WebhookData(BaseModel):
    model_config = ConfigDict(extra='ignore')

    reference: str
    status: Optional[str] = None
    amount: Optional[int] = None
    metadata: Any = None


class WebhookEvent(BaseModel):
    model_config = ConfigDict(extra='ignore')

    event: str
    data: WebhookData
