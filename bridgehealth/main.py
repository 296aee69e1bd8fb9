import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Response, UploadFile, status
from sqlalchemy.orm import Session

from . import database, models, schemas
from .catalog import CodeCatalogClient
from .config import configure_logging, settings
from .fhir import (
    BundleSynthesizer,
    CsvBundleConverter,
    CsvImportError,
    EmptySelectionError,
    render_bundle,
)
from .fhir.csv_import import decode_upload
from .fhir.synthesizer import download_filename, format_file_size
from .report import ReportBuilder
from .selection import SelectionSet
from .session import SessionContext, SessionStore

logger = logging.getLogger(__name__)

_catalog_client: Optional[CodeCatalogClient] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize logging and database tables on startup"""
    configure_logging()
    models.Base.metadata.create_all(bind=database.engine)
    logger.info("Session tables ready")
    yield
    if _catalog_client is not None:
        await _catalog_client.close()

# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="NAMASTE to ICD-11 terminology bridge with FHIR Bundle generation",
    version="1.0.0",
    lifespan=lifespan
)

# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_catalog_client() -> CodeCatalogClient:
    """Shared catalog client (one HTTP connection pool per process)"""
    global _catalog_client
    if _catalog_client is None:
        _catalog_client = CodeCatalogClient()
    return _catalog_client


def get_synthesizer() -> BundleSynthesizer:
    return BundleSynthesizer()


def get_csv_converter() -> CsvBundleConverter:
    return CsvBundleConverter()


def get_report_builder() -> ReportBuilder:
    return ReportBuilder()


def get_session(db: Session = Depends(database.get_db)) -> SessionContext:
    """Load the persisted session records for this request"""
    return SessionContext.load(SessionStore(db))


def require_user(session: SessionContext = Depends(get_session)) -> SessionContext:
    if not session.is_authenticated:
        raise HTTPException(status_code=401, detail="Sign in to access download history")
    return session


def _session_response(session: SessionContext) -> schemas.SessionResponse:
    return schemas.SessionResponse(
        user=session.user,
        selected_patient=session.selected_patient,
        history_count=len(session.history)
    )

# ============================================================================
# HEALTH
# ============================================================================

@app.get("/health", response_model=schemas.HealthResponse)
def health_check():
    """Health check endpoint - returns {"status": "ok"}"""
    return {"status": "ok"}

# ============================================================================
# CODE SEARCH
# ============================================================================

@app.get("/search", response_model=schemas.SearchResponse)
async def search_codes(
    q: str = Query("", description="Free-text NAMASTE term or code"),
    limit: Optional[int] = Query(None, ge=1, le=200),
    catalog: CodeCatalogClient = Depends(get_catalog_client)
):
    """
    Search the code catalog.

    Empty queries return no results without calling the catalog. Catalog
    failures degrade to an empty result set with the error message attached.
    """
    result = await catalog.execute(q, limit)
    return schemas.SearchResponse(
        query=q,
        count=len(result.mappings),
        results=result.mappings,
        error=result.error
    )

# ============================================================================
# FHIR GENERATION
# ============================================================================

def _synthesize(
    request: schemas.GenerateBundleRequest,
    session: SessionContext,
    synthesizer: BundleSynthesizer
):
    selection = SelectionSet(request.selected_codes)
    patient = session.selected_patient if request.include_patient else None
    now = synthesizer.clock()
    try:
        bundle = synthesizer.synthesize(selection.all(), patient, session.user, moment=now)
    except EmptySelectionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return selection, patient, bundle, download_filename(patient, now)


@app.post("/fhir/bundle", response_model=schemas.GenerateBundleResponse)
def generate_bundle(
    request: schemas.GenerateBundleRequest,
    session: SessionContext = Depends(get_session),
    synthesizer: BundleSynthesizer = Depends(get_synthesizer)
):
    """
    Generate a FHIR transaction Bundle for the selected codes.

    Includes a Patient resource when a patient is selected in the session.
    Returns 400 when no codes are selected.
    """
    _, _, bundle, filename = _synthesize(request, session, synthesizer)
    return schemas.GenerateBundleResponse(
        success=True,
        bundle=bundle.to_dict(),
        resource_counts=bundle.resource_counts(),
        filename=filename,
        file_size=format_file_size(render_bundle(bundle))
    )


@app.post("/fhir/download")
def download_bundle(
    request: schemas.GenerateBundleRequest,
    session: SessionContext = Depends(get_session),
    synthesizer: BundleSynthesizer = Depends(get_synthesizer)
):
    """
    Generate and download a Bundle as a JSON file.

    When a user is signed in the download is recorded in the history
    ledger; the entry id is returned in the X-History-Entry header.
    """
    selection, patient, bundle, filename = _synthesize(request, session, synthesizer)
    artifact = render_bundle(bundle)
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}

    if session.is_authenticated:
        entry = session.record_download(
            bundle,
            filename,
            selection.all(),
            request.search_query,
            patient
        )
        headers["X-History-Entry"] = entry.id

    return Response(content=artifact, media_type="application/json", headers=headers)

# ============================================================================
# PDF REPORT
# ============================================================================

@app.post("/report/pdf")
def download_report(
    request: schemas.GenerateBundleRequest,
    session: SessionContext = Depends(get_session),
    builder: ReportBuilder = Depends(get_report_builder)
):
    """
    Download a PDF conversion report for the selected codes.

    Signed-in downloads are recorded in the history as PDF Report entries;
    those entries cannot be downloaded again.
    """
    selection = SelectionSet(request.selected_codes)
    patient = session.selected_patient if request.include_patient else None
    try:
        report = builder.build(selection.all(), patient, session.user)
    except EmptySelectionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    headers = {"Content-Disposition": f'attachment; filename="{report.filename}"'}
    if session.is_authenticated:
        entry = session.record_report(report.filename, selection.all(), request.search_query, patient)
        headers["X-History-Entry"] = entry.id

    return Response(content=report.content, media_type="application/pdf", headers=headers)

# ============================================================================
# CSV UPLOAD
# ============================================================================

@app.post("/csv/upload", response_model=schemas.CsvUploadResponse)
async def upload_csv(
    file: UploadFile = File(...),
    converter: CsvBundleConverter = Depends(get_csv_converter)
):
    """
    Convert an uploaded CSV (Code, Term, optional Definition) to a FHIR
    collection Bundle with a CodeSystem and one Condition per row.
    """
    raw = await file.read()
    try:
        result = converter.convert_text(decode_upload(raw))
    except CsvImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return schemas.CsvUploadResponse(
        success=True,
        row_count=result.row_count,
        bundle=result.bundle.to_dict()
    )

# ============================================================================
# HISTORY
# ============================================================================

@app.get("/history", response_model=schemas.HistoryResponse)
def list_history(session: SessionContext = Depends(require_user)):
    """Download history, newest first, with summary counts"""
    return schemas.HistoryResponse(
        entries=session.history.list(),
        summary=session.history.summary()
    )


@app.delete("/history", status_code=status.HTTP_204_NO_CONTENT)
def clear_history(session: SessionContext = Depends(require_user)):
    """Clear the entire download history"""
    session.history.clear()
    return None


@app.get("/history/{entry_id}/download")
def download_again(entry_id: str, session: SessionContext = Depends(require_user)):
    """
    Re-download a previous Bundle.

    The file is rendered from the stored Bundle and is identical to the
    original download. PDF report entries return 409.
    """
    entry = session.history.get(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    replay = session.history.replay(entry_id)
    if replay is None:
        raise HTTPException(status_code=409, detail=f"{entry.type.value} entries cannot be downloaded again")
    filename, artifact = replay
    return Response(
        content=artifact,
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )

# ============================================================================
# SESSION (mock authentication, patient selection)
# ============================================================================

@app.get("/session", response_model=schemas.SessionResponse)
def get_session_state(session: SessionContext = Depends(get_session)):
    return _session_response(session)


@app.post("/session/login", response_model=schemas.SessionResponse)
def login(user: schemas.AuthorContext, session: SessionContext = Depends(get_session)):
    """
    Mock sign-in.

    No credentials are checked; the submitted profile becomes the session user.
    """
    session.login(user)
    return _session_response(session)


@app.post("/session/logout", response_model=schemas.SessionResponse)
def logout(session: SessionContext = Depends(get_session)):
    session.logout()
    return _session_response(session)


@app.put("/session/patient", response_model=schemas.SessionResponse)
def select_patient(
    patient: schemas.PatientContext,
    session: SessionContext = Depends(get_session)
):
    """
    Select the patient used for FHIR generation.

    Invalid name, age, phone or email fields are rejected with 422.
    """
    session.select_patient(patient)
    return _session_response(session)


@app.delete("/session/patient", response_model=schemas.SessionResponse)
def clear_patient(session: SessionContext = Depends(get_session)):
    """Return to the practitioner view (no patient selected)"""
    session.clear_patient()
    return _session_response(session)
