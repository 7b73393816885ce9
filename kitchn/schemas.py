from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .normalize import DEFAULT_CATEGORY, DEFAULT_UNIT

QuantityIn = Union[float, str, None]


# ---------- editor form ----------

class SectionForm(BaseModel):
    local_id: str
    db_id: Optional[str] = None
    title: str = ""
    instructions: str = ""
    collapsed: bool = False


class IngredientForm(BaseModel):
    local_id: str
    db_id: Optional[str] = None
    quantity: QuantityIn = ""
    unit: str = DEFAULT_UNIT
    designation: str = ""


class FormSnapshot(BaseModel):
    """Row ids loaded when the edit session began; removed after a save."""

    section_ids: List[str] = Field(default_factory=list)
    ingredient_ids: List[str] = Field(default_factory=list)


class RecipeForm(BaseModel):
    recipe_id: Optional[str] = None
    title: str = Field("", json_schema_extra={"example": "Tarte aux pommes"})
    servings: Optional[int] = 4
    category: str = DEFAULT_CATEGORY
    notes: str = ""
    sections: List[SectionForm] = Field(default_factory=list)
    section_ingredients: Dict[str, List[IngredientForm]] = Field(
        default_factory=dict
    )
    snapshot: Optional[FormSnapshot] = None


class SaveResult(BaseModel):
    recipe_id: str
    created: bool


# ---------- recipes (read side) ----------

class IngredientOut(BaseModel):
    id: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    designation: str


class SectionOut(BaseModel):
    id: str
    title: Optional[str] = None
    instructions: Optional[str] = None
    order_index: int
    ingredients: List[IngredientOut] = Field(default_factory=list)


class RecipeSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    category: str
    servings: int
    restaurant_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class RecipeDetail(RecipeSummary):
    notes: Optional[str] = None
    sections: List[SectionOut] = Field(default_factory=list)


# ---------- auth ----------

class SignUpIn(BaseModel):
    email: str
    password: str = Field(..., min_length=6)
    full_name: str = ""
    job_title: str = ""
    # blank: solo account, can later join a restaurant by invitation
    restaurant_name: str = ""


class SignInIn(BaseModel):
    email: str
    password: str
    remember: bool = True


class TokenOut(BaseModel):
    token: str
    expires_at: datetime
    remember: bool


class ProfileOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    establishment: Optional[str] = None
    restaurant_id: Optional[str] = None
    restaurant_role: Optional[str] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = None
    job_title: Optional[str] = None
    establishment: Optional[str] = None


# ---------- team ----------

class InvitationIn(BaseModel):
    email: str
    role: str


class InvitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    restaurant_id: str
    email: str
    role: str
    token: str
    invited_user_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None


class AcceptInvitationIn(BaseModel):
    token: str


class RoleIn(BaseModel):
    restaurant_role: str


class AttachUserIn(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    restaurant_role: Optional[str] = None


# ---------- groups ----------

class GroupIn(BaseModel):
    name: str
    description: Optional[str] = None


class GroupRename(BaseModel):
    name: str


class MemberOut(BaseModel):
    id: str
    email: str
    full_name: Optional[str] = None
    role: str


class GroupOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    restaurant_id: Optional[str] = None
    created_by: Optional[str] = None
    is_owner: bool = False
    members: List[MemberOut] = Field(default_factory=list)


class AddMemberIn(BaseModel):
    user_id: Optional[str] = None
    email: Optional[str] = None


class ShareIn(BaseModel):
    group_ids: List[str] = Field(default_factory=list)


# ---------- billing ----------

class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price_cents: int
    interval: str


class CheckoutIn(BaseModel):
    plan_id: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class PortalIn(BaseModel):
    return_url: Optional[str] = None


class SubscriptionStatus(BaseModel):
    is_premium: bool
    status: Optional[str] = None
    plan_id: Optional[str] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    max_groups: Optional[int] = None
    max_members_per_group: Optional[int] = None


# ---------- AI import ----------

class ParsedIngredient(BaseModel):
    quantity: Optional[float] = None
    unit: Optional[str] = None
    designation: str = ""


class ParsedSection(BaseModel):
    title: Optional[str] = None
    ingredients: List[ParsedIngredient] = Field(default_factory=list)
    instructions: Optional[str] = None


class ParsedRecipe(BaseModel):
    title: str = ""
    servings: Optional[int] = None
    sections: List[ParsedSection] = Field(default_factory=list)
    general_instructions: Optional[str] = None


class ImportResult(BaseModel):
    success: bool = True
    recipe_id: str
    title: str
    sections_count: int


class DriveImportIn(BaseModel):
    file_id: str = ""
    access_token: str = ""
