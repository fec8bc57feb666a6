from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

import crud
import documents
import ledger
import models
import plans
import ranking
import schemas
from auth import get_current_user
from database import create_db_and_tables, get_db, session_scope
from errors import (
    NotFound,
    ServiceException,
    general_exception_handler,
    http_exception_handler,
    service_exception_handler,
)
from observability import RequestContextMiddleware, init_observability
from scoring import ScoringClient, get_scoring_client
from settings import Settings, get_settings


# Initialise observability before creating app
init_observability()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    if get_settings().seed_plans_on_startup:
        with session_scope() as db:
            plans.seed_default_plans(db)
    yield
    if get_scoring_client.cache_info().currsize:
        await get_scoring_client().aclose()


app = FastAPI(
    title="Talent Ranker",
    description="Rank candidate CVs against a job description, metered by subscription plan",
    version="0.1.0",
    lifespan=lifespan,
)

# --- CORS Middleware ---
origins = [
    "http://localhost",
    "http://localhost:5173",
    "http://localhost:8000",
    "http://127.0.0.1",
    "http://127.0.0.1:8000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextMiddleware)

app.add_exception_handler(ServiceException, service_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# --- User & plan endpoints ---
@app.get("/users/me", response_model=schemas.User, tags=["Users"])
def get_me(current_user: models.User = Depends(get_current_user)):
    """Returns the authenticated user's database record."""
    return current_user


@app.put("/users/me/plan", response_model=schemas.User, tags=["Users"])
def update_my_plan(
    assignment: schemas.PlanAssignment,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return plans.assign_plan(db, current_user, assignment.plan_id, reset_usage=assignment.reset_usage)


@app.post(
    "/users/me/upgrade-request",
    response_model=schemas.UpgradeRequest,
    status_code=status.HTTP_201_CREATED,
    tags=["Users"],
)
def request_upgrade_endpoint(
    request: schemas.UpgradeRequestCreate,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Ask an admin to move the current user to another plan."""
    upgrade = crud.create_upgrade_request(db, current_user, request)
    logger.info("Upgrade requested", user_id=current_user.id, requested_plan_id=upgrade.requested_plan_id)
    return upgrade


@app.get("/plans", response_model=List[schemas.Plan], tags=["Plans"])
def list_plans_endpoint(region: Optional[str] = Query(None), db: Session = Depends(get_db)):
    return plans.list_plans(db, region=region)


@app.get("/usage", response_model=schemas.UsageReport, tags=["Usage"])
def get_usage_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return ledger.get_usage(db, current_user.id)


# --- Job description endpoints ---
@app.post("/jd/upload", response_model=schemas.JobDescription, status_code=status.HTTP_201_CREATED, tags=["Job Descriptions"])
def upload_jd_endpoint(
    file: Optional[UploadFile] = File(None),
    title: Optional[str] = Form(None),
    content: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return documents.upload_job_description(
        db, current_user.id, file=file, title=title, content=content, description=description, settings=settings
    )


@app.get("/jd", response_model=List[schemas.JobDescription], tags=["Job Descriptions"])
def list_jds_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_job_descriptions_for_user(db, current_user.id)


@app.get("/jd/{jd_id}", response_model=schemas.JobDescription, tags=["Job Descriptions"])
def get_jd_endpoint(
    jd_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    jd = crud.get_job_description(db, jd_id, current_user.id)
    if jd is None:
        raise NotFound("Job Description not found")
    return jd


@app.delete("/jd/{jd_id}", tags=["Job Descriptions"])
def delete_jd_endpoint(
    jd_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.archive_job_description(db, jd_id, current_user.id):
        raise NotFound("Job Description not found")
    logger.info("Job description archived", jd_id=jd_id, user_id=current_user.id)
    return {"success": True, "status": "archived", "id": jd_id}


# --- CV endpoints ---
@app.post("/cv/upload", response_model=schemas.CandidateUploadResult, status_code=status.HTTP_201_CREATED, tags=["CVs"])
def upload_cvs_endpoint(
    files: Optional[List[UploadFile]] = File(None),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return documents.upload_candidates(db, current_user.id, files or [], settings=settings)


@app.get("/cv", response_model=List[schemas.CandidateDocument], tags=["CVs"])
def list_cvs_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return crud.get_candidates_for_user(db, current_user.id)


@app.get("/cv/{cv_id}", response_model=schemas.CandidateDocument, tags=["CVs"])
def get_cv_endpoint(
    cv_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cv = crud.get_candidate(db, cv_id, current_user.id)
    if cv is None:
        raise NotFound("CV not found")
    return cv


@app.delete("/cv/{cv_id}", tags=["CVs"])
def delete_cv_endpoint(
    cv_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.archive_candidate(db, cv_id, current_user.id):
        raise NotFound("CV not found")
    logger.info("CV archived", cv_id=cv_id, user_id=current_user.id)
    return {"success": True, "status": "archived", "id": cv_id}


# --- Ranking endpoints ---
@app.post("/ranking/rank", response_model=schemas.RankingBatch, tags=["Ranking"])
async def rank_endpoint(
    request: schemas.RankByReferenceRequest,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: ScoringClient = Depends(get_scoring_client),
    settings: Settings = Depends(get_settings),
):
    """Rank stored CVs against a stored job description."""
    return await ranking.rank_by_reference(
        db, current_user.id, request.jd_id, request.cv_ids, client, settings=settings
    )


@app.post("/ranking/rank-with-files", response_model=schemas.RankingBatch, tags=["Ranking"])
async def rank_with_files_endpoint(
    jd: Optional[UploadFile] = File(None),
    jd_text: Optional[str] = Form(None),
    cvs: Optional[List[UploadFile]] = File(None),
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    client: ScoringClient = Depends(get_scoring_client),
    settings: Settings = Depends(get_settings),
):
    """Upload one job description (file or text) and 1..N CV files and rank them."""
    logger.info("Ranking request with files", cv_count=len(cvs or []), user_id=current_user.id)
    return await ranking.rank_uploads(
        db, current_user.id, cvs or [], client, jd_file=jd, jd_text=jd_text, settings=settings
    )


@app.get("/ranking/results", response_model=List[schemas.RankingBatch], tags=["Ranking"])
def list_results_endpoint(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return crud.get_batches_for_user(db, current_user.id, limit=settings.ranking_results_limit)


@app.get("/ranking/results/{batch_id}", response_model=schemas.RankingBatch, tags=["Ranking"])
def get_result_endpoint(
    batch_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    batch = crud.get_batch(db, batch_id, current_user.id)
    if batch is None:
        raise NotFound("Ranking result not found")
    return batch


@app.delete("/ranking/results/{batch_id}", tags=["Ranking"])
def delete_result_endpoint(
    batch_id: int,
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not crud.archive_batch(db, batch_id, current_user.id):
        raise NotFound("Ranking result not found")
    return {"success": True, "status": "archived", "id": batch_id}


# --- Main execution --- (for running with uvicorn)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
