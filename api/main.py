from dotenv import load_dotenv

load_dotenv()

from typing import Any, Dict, List, Optional
import logging
import uuid

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from tender_evaluation import __version__
from tender_evaluation.comparator import compare_proposals
from tender_evaluation.config import config
from tender_evaluation.context import DiagnosticsBuffer, EvaluationContext
from tender_evaluation.errors import (
    ComparisonFailure,
    ConfigurationError,
    DocumentError,
    ExtractionFailure,
    RenderFailure,
    TenderEvaluationError,
    describe_error,
)
from tender_evaluation.ingestion import load_upload
from tender_evaluation.llm import CompletionService, build_completion_service
from tender_evaluation.lots import extract_lots
from tender_evaluation.main import TenderEvaluationPipeline
from tender_evaluation.normalizer import normalize_text
from tender_evaluation.report import ReportRenderer
from tender_evaluation.schemas import (
    CaseInfo,
    ComparisonRecord,
    Document,
    LotEvaluationResult,
    LotInfo,
    ProgressUpdate,
    ProposalEvaluation,
    UploadResult,
)

logging.basicConfig(
    level=config.log_level,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)

app = FastAPI(title="TenderEval", version=__version__)
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_methods=["*"], allow_headers=["*"])

jobs: Dict[str, Dict[str, Any]] = {}  # job_id -> {status, progress, message, stage, result, error}
diagnostics = DiagnosticsBuffer(capacity=config.diagnostics_buffer_size)

STATUS_CODES = {
    ConfigurationError: 503,
    ExtractionFailure: 422,
    ComparisonFailure: 422,
    DocumentError: 400,
    RenderFailure: 500,
}


# ── Request bodies ────────────────────────────────────────────────────────

class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentIn(_Body):
    name: str
    content: str
    lot_number: Optional[int] = None


class LotsRequest(_Body):
    specifications: List[DocumentIn]


class EvaluateRequest(_Body):
    specifications: List[DocumentIn]
    proposals: List[DocumentIn] = Field(default_factory=list)
    # Single-lot mode when lot_number is given; otherwise every lot in `lots`
    # (or the lots found in the specifications) is evaluated.
    lot_number: Optional[int] = None
    lot_title: Optional[str] = None
    has_proposal: bool = True
    lots: Optional[List[LotInfo]] = None


class CompareRequest(_Body):
    evaluations: List[ProposalEvaluation]


class EvaluationReportRequest(_Body):
    result: LotEvaluationResult
    case_info: CaseInfo = Field(default_factory=CaseInfo)


class ComparisonReportRequest(_Body):
    comparison: ComparisonRecord
    case_info: CaseInfo = Field(default_factory=CaseInfo)


# ── Plumbing ──────────────────────────────────────────────────────────────

def get_completion_service() -> CompletionService:
    """Overridden in tests with a scripted fake."""
    return build_completion_service(config)


def new_context(progress=None) -> EvaluationContext:
    return EvaluationContext(diagnostics=diagnostics, progress=progress)


def to_documents(items: List[DocumentIn], role: str) -> List[Document]:
    return [
        Document(name=d.name, content=normalize_text(d.content), role=role, lot_number=d.lot_number)
        for d in items
    ]


@app.exception_handler(TenderEvaluationError)
async def tender_error_handler(request: Request, exc: TenderEvaluationError):
    status = next((code for cls, code in STATUS_CODES.items() if isinstance(exc, cls)), 500)
    body = {"error": exc.code, "message": exc.user_message}
    if isinstance(exc, ExtractionFailure) and exc.lot_number is not None:
        body["lotNumber"] = exc.lot_number
    return JSONResponse(status_code=status, content=body)


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(by_alias=True, mode="json")


# ── Endpoints ─────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": __version__,
        "model": config.llm.model,
        "credentialConfigured": bool(config.llm.api_key),
    }


@app.get("/diagnostics")
def get_diagnostics(level: Optional[str] = None):
    entries = diagnostics.entries(level)
    return {"capacity": diagnostics.capacity, "count": len(entries), "entries": entries}


@app.post("/upload")
async def upload(files: List[UploadFile] = File(...), role: str = Form("proposal")):
    if role not in ("specification", "proposal"):
        raise HTTPException(status_code=400, detail=f"Unknown role '{role}'")
    results: List[UploadResult] = []
    for f in files:
        data = await f.read()
        results.append(load_upload(f.filename or "document", data, role, config))
    return {"results": [dump(r) for r in results]}


@app.post("/lots/extract")
async def lots_extract(body: LotsRequest, service: CompletionService = Depends(get_completion_service)):
    ctx = new_context()
    try:
        lots = await extract_lots(to_documents(body.specifications, "specification"), service, ctx)
    finally:
        ctx.close()
    return {"lots": [dump(l) for l in lots]}


async def _evaluate(body: EvaluateRequest, service: CompletionService, ctx: EvaluationContext) -> LotEvaluationResult:
    pipeline = TenderEvaluationPipeline(service, config, ctx)
    specs = to_documents(body.specifications, "specification")
    proposals = to_documents(body.proposals, "proposal")
    if body.lot_number is not None:
        lot = LotInfo(lot_number=body.lot_number, title=body.lot_title or f"Lot {body.lot_number}")
        return await pipeline.evaluate_lot(lot, specs, proposals, has_proposal=body.has_proposal)
    return await pipeline.evaluate_lots(specs, proposals, body.lots)


@app.post("/evaluate")
async def evaluate(body: EvaluateRequest, service: CompletionService = Depends(get_completion_service)):
    ctx = new_context()
    try:
        result = await _evaluate(body, service, ctx)
    finally:
        ctx.close()
    return dump(result)


@app.post("/compare")
async def compare(body: CompareRequest, service: CompletionService = Depends(get_completion_service)):
    ctx = new_context()
    try:
        record = await compare_proposals(body.evaluations, service, ctx, config)
    finally:
        ctx.close()
    return dump(record)


def _pdf_response(content: bytes, filename: str, pages: int) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Page-Count": str(pages),
        },
    )


@app.post("/reports/evaluation")
def report_evaluation(body: EvaluationReportRequest):
    report = ReportRenderer(config).render_evaluation(body.result, body.case_info)
    return _pdf_response(report.content, report.filename, report.page_count)


@app.post("/reports/comparison")
def report_comparison(body: ComparisonReportRequest):
    report = ReportRenderer(config).render_comparison(body.comparison, body.case_info)
    return _pdf_response(report.content, report.filename, report.page_count)


# ── Background jobs (progress polling) ────────────────────────────────────

@app.post("/jobs/evaluate")
async def start_evaluation_job(
    body: EvaluateRequest,
    background: BackgroundTasks,
    service: CompletionService = Depends(get_completion_service),
):
    job_id = str(uuid.uuid4())[:8]
    jobs[job_id] = {
        "jobId": job_id, "status": "queued", "progress": 0.0,
        "message": "Queued", "stage": None, "result": None, "error": None,
    }
    background.add_task(run_evaluation_job, job_id, body, service)
    return {"jobId": job_id}


async def run_evaluation_job(job_id: str, body: EvaluateRequest, service: CompletionService):
    job = jobs[job_id]

    def update(p: ProgressUpdate):
        job["status"] = "running"
        job["progress"] = p.percentage
        job["message"] = p.message
        job["stage"] = p.stage
        job["lotNumber"] = p.lot_number
        job["proposalIndex"] = p.proposal_index
        job["proposalCount"] = p.proposal_count
        job["proposalName"] = p.proposal_name

    ctx = new_context(progress=update)
    job["status"] = "running"
    try:
        result = await _evaluate(body, service, ctx)
        job["result"] = dump(result)
        job["status"] = "done"
        job["progress"] = 100.0
        job["message"] = f"Complete — {len(result.evaluations)} evaluations"
    except Exception as e:
        ctx.logger.error("Job %s failed: %s", job_id, e)
        job["status"] = "error"
        job["error"] = getattr(e, "code", "UNEXPECTED_ERROR")
        job["message"] = describe_error(e)
    finally:
        ctx.close()


@app.get("/jobs/{job_id}")
def get_job(job_id: str):
    if job_id not in jobs:
        raise HTTPException(status_code=404, detail="Job not found")
    return jobs[job_id]


@app.get("/jobs")
def list_jobs():
    return [{k: v for k, v in j.items() if k != "result"} for j in jobs.values()]


@app.delete("/jobs/{job_id}")
def delete_job(job_id: str):
    jobs.pop(job_id, None)
    return {"deleted": job_id}
