import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Header,
    Query,
    Request,
    Response,
    UploadFile,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import auth, billing, crud, groups, schemas, team
from .auth import AuthContext
from .billing import StripeGateway
from .config import Settings, configure_logging, get_settings
from .db import SessionLocal, init_db
from .drive import DriveClient
from .editor import (
    capture_snapshot,
    clean_recipe_id,
    load_recipe_form,
    new_recipe_form,
    save_recipe,
)
from .errors import KitchnError, PayloadTooLarge
from .importer import RecipeParser, import_document, import_drive_file
from .schemas import FormSnapshot
from .store import SqlRowStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_db()
    yield


app = FastAPI(title="Kitchn", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(KitchnError)
async def kitchn_error_handler(request: Request, exc: KitchnError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_auth(
    authorization: Optional[str] = Header(None), db: Session = Depends(get_db)
) -> AuthContext:
    token = None
    if authorization:
        scheme, _, value = authorization.partition(" ")
        token = value.strip() if scheme.lower() == "bearer" else None
    return auth.resolve_session(db, token)


def get_store(db: Session = Depends(get_db)) -> SqlRowStore:
    return SqlRowStore(db)


def get_parser(settings: Settings = Depends(get_settings)) -> RecipeParser:
    return RecipeParser.from_settings(settings)


def get_gateway(settings: Settings = Depends(get_settings)) -> StripeGateway:
    return StripeGateway.from_settings(settings)


def get_drive(settings: Settings = Depends(get_settings)):
    drive = DriveClient.from_settings(settings)
    try:
        yield drive
    finally:
        drive.close()


# ---------- auth ----------

@app.post("/auth/signup", response_model=schemas.ProfileOut, status_code=201)
def signup(data: schemas.SignUpIn, db: Session = Depends(get_db)):
    return auth.sign_up(db, data)


@app.post("/auth/signin", response_model=schemas.TokenOut)
def signin(
    data: schemas.SignInIn,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    session = auth.sign_in(db, settings, data.email, data.password, data.remember)
    return schemas.TokenOut(
        token=session.token, expires_at=session.expires_at, remember=session.remember
    )


@app.post("/auth/signout")
def signout(ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)):
    auth.sign_out(db, ctx.token)
    return {"success": True}


@app.get("/auth/me", response_model=schemas.ProfileOut)
def read_me(ctx: AuthContext = Depends(get_auth)):
    return ctx.user


@app.patch("/auth/me", response_model=schemas.ProfileOut)
def update_me(
    changes: schemas.ProfileUpdate,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return auth.update_profile(db, ctx, changes)


@app.delete("/auth/me")
def delete_me(ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)):
    auth.delete_account(db, ctx)
    return {"success": True}


# ---------- recipes ----------

@app.get("/api/recipes", response_model=List[schemas.RecipeSummary])
def list_recipes(
    q: Optional[str] = None,
    category: Optional[str] = None,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return crud.list_recipes(db, ctx, q=q, category=category)


@app.get("/api/recipes/{recipe_id}", response_model=schemas.RecipeDetail)
def get_recipe(
    recipe_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    return crud.get_recipe_detail(db, ctx, recipe_id)


@app.get("/api/recipes/{recipe_id}/scaled", response_model=schemas.RecipeDetail)
def get_scaled_recipe(
    recipe_id: str,
    servings: int = Query(..., ge=1),
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return crud.scale_recipe(crud.get_recipe_detail(db, ctx, recipe_id), servings)


@app.delete("/api/recipes/{recipe_id}")
def delete_recipe(
    recipe_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    crud.delete_recipe(db, ctx, recipe_id)
    return {"deleted": True}


# ---------- editor ----------

@app.get("/api/editor/new", response_model=schemas.RecipeForm)
def editor_new(
    ctx: AuthContext = Depends(get_auth), settings: Settings = Depends(get_settings)
):
    return new_recipe_form(settings.default_category)


@app.get("/api/recipes/{recipe_id}/form", response_model=schemas.RecipeForm)
def editor_load(
    recipe_id: str,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    store: SqlRowStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    crud.get_editable_recipe(db, ctx, recipe_id)
    return load_recipe_form(store, recipe_id, category=settings.default_category)


@app.post("/api/recipes/form", response_model=schemas.SaveResult)
def editor_save(
    form: schemas.RecipeForm,
    response: Response,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    store: SqlRowStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    form.recipe_id = clean_recipe_id(form.recipe_id)
    if form.recipe_id:
        crud.get_editable_recipe(db, ctx, form.recipe_id)
        current = capture_snapshot(store, form.recipe_id)
        if form.snapshot is None:
            form.snapshot = current
        else:
            # only rows that still belong to this recipe may be removed
            form.snapshot = FormSnapshot(
                section_ids=[i for i in form.snapshot.section_ids if i in current.section_ids],
                ingredient_ids=[
                    i for i in form.snapshot.ingredient_ids if i in current.ingredient_ids
                ],
            )
    result = save_recipe(store, ctx, form, default_category=settings.default_category)
    if result.created:
        response.status_code = 201
    return result


@app.post("/api/import", response_model=schemas.ImportResult)
def import_recipe(
    file: UploadFile = File(...),
    ctx: AuthContext = Depends(get_auth),
    store: SqlRowStore = Depends(get_store),
    parser: RecipeParser = Depends(get_parser),
    settings: Settings = Depends(get_settings),
):
    data = file.file.read(settings.max_upload_bytes + 1)
    if len(data) > settings.max_upload_bytes:
        raise PayloadTooLarge("File is too large")
    return import_document(
        store,
        ctx,
        parser,
        data,
        file.filename or "",
        file.content_type,
        category=settings.default_category,
    )


@app.post("/api/import/drive", response_model=schemas.ImportResult)
def import_from_drive(
    data: schemas.DriveImportIn,
    ctx: AuthContext = Depends(get_auth),
    store: SqlRowStore = Depends(get_store),
    parser: RecipeParser = Depends(get_parser),
    drive: DriveClient = Depends(get_drive),
    settings: Settings = Depends(get_settings),
):
    return import_drive_file(
        store,
        ctx,
        parser,
        drive,
        data.file_id,
        data.access_token,
        max_bytes=settings.max_upload_bytes,
        category=settings.default_category,
    )


# ---------- team ----------

@app.post("/api/invitations", response_model=schemas.InvitationOut, status_code=201)
def send_invitation(
    data: schemas.InvitationIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return team.send_invitation(db, settings, ctx, data)


@app.get("/api/invitations/pending", response_model=Optional[schemas.InvitationOut])
def pending_invitation(ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)):
    return team.pending_invitation(db, ctx)


@app.post("/api/invitations/accept", response_model=schemas.ProfileOut)
def accept_invitation(
    data: schemas.AcceptInvitationIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return team.accept_invitation(db, ctx, data.token)


@app.delete("/api/invitations/{invitation_id}")
def revoke_invitation(
    invitation_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    team.revoke_invitation(db, ctx, invitation_id)
    return {"success": True}


@app.get("/api/team", response_model=List[schemas.ProfileOut])
def list_team(ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)):
    return team.list_team(db, ctx)


@app.put("/api/team/{user_id}/role", response_model=schemas.ProfileOut)
def set_role(
    user_id: str,
    data: schemas.RoleIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return team.set_role(db, ctx, user_id, data.restaurant_role)


@app.post("/api/team/attach", response_model=schemas.ProfileOut)
def attach_user(
    data: schemas.AttachUserIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return team.attach_user(db, ctx, data)


@app.delete("/api/team/{user_id}")
def detach_user(
    user_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    team.detach_user(db, ctx, user_id)
    return {"success": True}


# ---------- groups ----------

@app.get("/api/groups", response_model=List[schemas.GroupOut])
def list_groups(ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)):
    return groups.list_groups(db, ctx)


@app.post("/api/groups", response_model=schemas.GroupOut, status_code=201)
def create_group(
    data: schemas.GroupIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    group = groups.create_group(db, settings, ctx, data)
    return groups.group_out(db, ctx, group)


@app.patch("/api/groups/{group_id}", response_model=schemas.GroupOut)
def rename_group(
    group_id: str,
    data: schemas.GroupRename,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    group = groups.rename_group(db, ctx, group_id, data.name)
    return groups.group_out(db, ctx, group)


@app.delete("/api/groups/{group_id}")
def delete_group(
    group_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    groups.delete_group(db, ctx, group_id)
    return {"success": True}


@app.post("/api/groups/{group_id}/members")
def add_group_member(
    group_id: str,
    data: schemas.AddMemberIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return groups.add_member(db, settings, ctx, group_id, data)


@app.delete("/api/groups/{group_id}/members/{user_id}")
def remove_group_member(
    group_id: str,
    user_id: str,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    groups.remove_member(db, ctx, group_id, user_id)
    return {"ok": True}


@app.get("/api/groups/{group_id}/recipes", response_model=List[schemas.RecipeSummary])
def group_recipes(
    group_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    return groups.group_recipes(db, ctx, group_id)


@app.get("/api/recipes/{recipe_id}/groups")
def recipe_groups(
    recipe_id: str, ctx: AuthContext = Depends(get_auth), db: Session = Depends(get_db)
):
    return {"group_ids": groups.recipe_groups(db, ctx, recipe_id)}


@app.put("/api/recipes/{recipe_id}/groups")
def share_recipe(
    recipe_id: str,
    data: schemas.ShareIn,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
):
    return {"group_ids": groups.share_recipe(db, ctx, recipe_id, data.group_ids)}


# ---------- billing ----------

@app.get("/api/plans", response_model=List[schemas.PlanOut])
def list_plans(db: Session = Depends(get_db)):
    return billing.list_plans(db)


@app.get("/api/subscription", response_model=schemas.SubscriptionStatus)
def read_subscription(
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return billing.subscription_status(db, settings, ctx)


@app.post("/api/billing/checkout")
def create_checkout(
    data: schemas.CheckoutIn,
    request: Request,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    origin = request.headers.get("origin", "")
    return billing.create_checkout(db, ctx, gateway, data, origin)


@app.post("/api/billing/portal")
def create_portal(
    data: schemas.PortalIn,
    request: Request,
    ctx: AuthContext = Depends(get_auth),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    origin = request.headers.get("origin", "")
    return billing.create_portal(db, ctx, gateway, data.return_url, origin)


@app.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    payload = await request.body()
    return billing.handle_webhook(db, gateway, payload, stripe_signature)


@app.get("/health")
def health():
    return {"status": "ok"}
