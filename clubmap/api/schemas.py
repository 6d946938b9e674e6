"""
Request and response models for the submission API.

Request models are the validation boundary: the core assumes payloads that
reach it are already within these bounds.
"""

import re
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.schema import ClubPayload, ContactInfo, ExternalLink, SubmissionKind

PROVINCES = [
    "北京市", "天津市", "上海市", "重庆市",
    "河北省", "山西省", "辽宁省", "吉林省", "黑龙江省",
    "江苏省", "浙江省", "安徽省", "福建省", "江西省", "山东省",
    "河南省", "湖北省", "湖南省", "广东省", "海南省",
    "四川省", "贵州省", "云南省", "陕西省", "甘肃省", "青海省", "台湾省",
    "内蒙古自治区", "广西壮族自治区", "西藏自治区", "宁夏回族自治区", "新疆维吾尔自治区",
    "香港特别行政区", "澳门特别行政区",
]

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)

MAX_NAME = 100
MAX_CITY = 50
MAX_SHORT_DESCRIPTION = 300
MAX_LONG_DESCRIPTION = 3000
MAX_TAGS = 10
MAX_TAG_LENGTH = 20
MAX_LINKS = 10


def _check_url(v: str) -> str:
    if not URL_RE.match(v):
        raise ValueError('must be an http(s) URL')
    return v


def _clean_tags(v: List[str]) -> List[str]:
    cleaned = [t.strip() for t in v if t and t.strip()]
    for tag in cleaned:
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f'tag {tag!r} exceeds {MAX_TAG_LENGTH} characters')
    return cleaned


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ExternalLinkModel(BaseModel):
    type: str = Field(min_length=1, max_length=30)
    url: str = Field(max_length=500)

    @field_validator('url')
    @classmethod
    def url_must_be_http(cls, v):
        return _check_url(v.strip())


class ContactModel(BaseModel):
    email: Optional[str] = None
    qq: Optional[str] = Field(default=None, max_length=20)
    wechat: Optional[str] = Field(default=None, max_length=50)

    @field_validator('email')
    @classmethod
    def email_must_be_valid(cls, v):
        if v and not EMAIL_RE.match(v.strip()):
            raise ValueError('invalid email address')
        return v.strip() if v else None


class ClubFields(BaseModel):
    """Club fields shared by submissions and administrative edits."""
    name: str = Field(max_length=MAX_NAME)
    school: str = Field(max_length=MAX_NAME)
    province: str
    city: str = Field(default="", max_length=MAX_CITY)
    coordinates: Coordinates
    short_description: str = Field(default="", max_length=MAX_SHORT_DESCRIPTION)
    long_description: str = Field(default="", max_length=MAX_LONG_DESCRIPTION)
    tags: List[str] = Field(default_factory=list, max_length=MAX_TAGS)
    logo: Optional[str] = None
    website: str = ""
    external_links: List[ExternalLinkModel] = Field(default_factory=list, max_length=MAX_LINKS)
    contact: ContactModel = Field(default_factory=ContactModel)

    @field_validator('name', 'school')
    @classmethod
    def must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('cannot be empty')
        return v.strip()

    @field_validator('province')
    @classmethod
    def province_must_be_known(cls, v):
        if v not in PROVINCES:
            raise ValueError('province must be one of the 34 provincial-level divisions')
        return v

    @field_validator('tags')
    @classmethod
    def tags_must_be_short(cls, v):
        return _clean_tags(v)

    @field_validator('website')
    @classmethod
    def website_must_be_http(cls, v):
        v = v.strip()
        return _check_url(v) if v else v

    def to_payload(self) -> ClubPayload:
        return ClubPayload(
            name=self.name,
            school=self.school,
            province=self.province,
            city=self.city.strip(),
            latitude=self.coordinates.latitude,
            longitude=self.coordinates.longitude,
            short_description=self.short_description,
            long_description=self.long_description,
            tags=list(self.tags),
            logo=self.logo or None,
            website=self.website,
            external_links=[ExternalLink(type=link.type, url=link.url) for link in self.external_links],
            contact=ContactInfo(**self.contact.model_dump()),
        )


class SubmissionCreateRequest(ClubFields):
    # camelCase spellings are what the browser submit form posts
    submission_type: str = Field(default="new", validation_alias=AliasChoices("submission_type", "submissionType"))
    editing_club_id: Optional[str] = Field(default=None,
                                           validation_alias=AliasChoices("editing_club_id", "editingClubId"))
    submitter_email: str = Field(validation_alias=AliasChoices("submitter_email", "submitterEmail"))

    @field_validator('submission_type')
    @classmethod
    def submission_type_must_be_valid(cls, v):
        if v.lower() not in ('new', 'edit'):
            raise ValueError("submission_type must be 'new' or 'edit'")
        return v.lower()

    @field_validator('submitter_email')
    @classmethod
    def submitter_email_must_be_valid(cls, v):
        if not EMAIL_RE.match(v.strip()):
            raise ValueError('invalid email address')
        return v.strip()

    @model_validator(mode='after')
    def edit_needs_target(self):
        if self.submission_type == 'edit' and not self.editing_club_id:
            raise ValueError('editing_club_id is required for edit submissions')
        if self.submission_type == 'new' and self.editing_club_id:
            raise ValueError('editing_club_id is only allowed for edit submissions')
        return self

    @property
    def kind(self) -> SubmissionKind:
        return SubmissionKind.EDIT if self.submission_type == 'edit' else SubmissionKind.NEW


class ClubUpdateRequest(BaseModel):
    """Partial administrative edit; only the fields sent are changed."""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = Field(default=None, max_length=MAX_NAME)
    school: Optional[str] = Field(default=None, max_length=MAX_NAME)
    province: Optional[str] = None
    city: Optional[str] = Field(default=None, max_length=MAX_CITY)
    coordinates: Optional[Coordinates] = None
    short_description: Optional[str] = Field(default=None, max_length=MAX_SHORT_DESCRIPTION)
    long_description: Optional[str] = Field(default=None, max_length=MAX_LONG_DESCRIPTION)
    tags: Optional[List[str]] = Field(default=None, max_length=MAX_TAGS)
    logo: Optional[str] = None
    website: Optional[str] = None
    external_links: Optional[List[ExternalLinkModel]] = Field(default=None, max_length=MAX_LINKS)
    contact: Optional[ContactModel] = None

    @field_validator('name', 'school')
    @classmethod
    def must_not_be_empty(cls, v):
        if v is not None and not v.strip():
            raise ValueError('cannot be empty')
        return v.strip() if v is not None else v

    @field_validator('province')
    @classmethod
    def province_must_be_known(cls, v):
        if v is not None and v not in PROVINCES:
            raise ValueError('province must be one of the 34 provincial-level divisions')
        return v

    @field_validator('tags')
    @classmethod
    def tags_must_be_short(cls, v):
        return _clean_tags(v) if v is not None else v

    def to_changes(self) -> Dict[str, Any]:
        """Store-level field changes for the fields that were sent."""
        data = self.model_dump(exclude_unset=True)
        coordinates = data.pop('coordinates', None)
        if coordinates:
            data['latitude'] = coordinates['latitude']
            data['longitude'] = coordinates['longitude']
        if data.get('contact') is not None:
            data['contact'] = {k: v for k, v in data['contact'].items() if v}
        return data


class DecisionRequest(BaseModel):
    reason: Optional[str] = None


class MigrateRequest(BaseModel):
    source_path: Optional[str] = None


class IntakeResponse(BaseModel):
    success: bool = True
    receipt: str
    status: str  # stored | buffered
    submission_id: Optional[str] = None
    duplicate_check: Dict[str, Any]
    message: str


class SubmissionListResponse(BaseModel):
    success: bool = True
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int


class ClubListResponse(BaseModel):
    success: bool = True
    count: int
    data: List[Dict[str, Any]]


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    submission_count: int
    pending_count: int
    club_count: int
    intake_pending: int


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    details: Optional[Dict[str, Any]] = None
