from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Dict, Any, Optional, List, Union
import logging
import uvicorn
from datetime import datetime

from insight_engine.config import get_config
from insight_engine.pipeline import AnalysisPipeline
from insight_engine.agents.cleaning_agent import validate_records
from insight_engine.agents.statistics_agent import perform_statistical_analysis
from insight_engine.agents.correlation_agent import find_correlations
from insight_engine.agents.pattern_agent import detect_patterns, seeded_source
from insight_engine.utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

config = get_config()

# Initialize FastAPI app
app = FastAPI(
    title="Insight Engine API",
    description="Statistics, correlations and pattern detection for tabular marketing data",
    version="1.0.0",
    docs_url="/docs" if config.api.ENABLE_DOCS else None
)

if config.api.ENABLE_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

# Global pipeline instance
pipeline = None

Scalar = Optional[Union[bool, int, float, str]]

class RecordsRequest(BaseModel):
    records: List[Dict[str, Scalar]]

class PatternRequest(RecordsRequest):
    seed: Optional[int] = Field(default=None, description="Seed for k-means initialisation")

class AnalysisRequest(PatternRequest):
    project_name: Optional[str] = None
    cleaning_options: Optional[Dict[str, bool]] = None
    report_query: Optional[str] = None

class AnalysisResponse(BaseModel):
    status: str
    project_name: str
    statistics: Dict[str, Any] = {}
    correlations: List[Dict[str, Any]] = []
    patterns: List[Dict[str, Any]] = []
    column_profiles: List[Dict[str, Any]] = []
    report_prompt: Optional[str] = None
    errors: List[str] = []

class StatusResponse(BaseModel):
    status: str
    current_step: Optional[str] = None
    next_action: Optional[str] = None
    execution_log: Optional[List[str]] = None

def _get_pipeline() -> AnalysisPipeline:
    global pipeline
    if pipeline is None:
        pipeline = AnalysisPipeline(config)
    return pipeline

def _require_valid(records: List[Dict[str, Any]]):
    report = validate_records(records)
    if not report.is_valid:
        raise HTTPException(status_code=400, detail=report.errors[:20])

@app.on_event("startup")
async def startup_event():
    """Initialize the pipeline on startup"""
    try:
        _get_pipeline()
        logger.info("Pipeline initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize pipeline: {str(e)}")
        raise

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}

@app.post("/analysis/run", response_model=AnalysisResponse)
async def run_analysis(request: AnalysisRequest):
    """Validate, clean and analyse a dataset in one pass"""
    _require_valid(request.records)

    result = await _get_pipeline().run_analysis(
        records=request.records,
        project_name=request.project_name,
        cleaning_options=request.cleaning_options,
        random_state=request.seed,
        report_query=request.report_query
    )

    if "error" in result:
        raise HTTPException(status_code=500, detail=result["error"])

    return AnalysisResponse(
        status=result.get("status", "completed"),
        project_name=result["project_name"],
        statistics=result.get("statistics") or {},
        correlations=result.get("correlations") or [],
        patterns=result.get("patterns") or [],
        column_profiles=result.get("column_profiles") or [],
        report_prompt=result.get("report_prompt"),
        errors=result.get("errors", [])
    )

@app.post("/analysis/statistics")
async def statistics(request: RecordsRequest):
    """Descriptive statistics per numeric field"""
    _require_valid(request.records)
    results = perform_statistical_analysis(request.records, config.statistics.OUTLIER_MULTIPLIER)
    return {"statistics": {name: stats.to_dict() for name, stats in results.items()}}

@app.post("/analysis/correlations")
async def correlations(request: RecordsRequest):
    """Pairwise correlations above the reporting threshold"""
    _require_valid(request.records)
    results = find_correlations(
        request.records,
        threshold=config.correlation.REPORT_THRESHOLD,
        include_p_values=config.correlation.INCLUDE_P_VALUES
    )
    return {"correlations": [result.to_dict() for result in results]}

@app.post("/analysis/patterns")
async def patterns(request: PatternRequest):
    """Trend, seasonality, anomaly and cluster detection"""
    _require_valid(request.records)
    seed = request.seed if request.seed is not None else config.patterns.RANDOM_STATE
    results = detect_patterns(
        request.records,
        rng=seeded_source(seed),
        k=config.patterns.KMEANS_K,
        max_iterations=config.patterns.KMEANS_MAX_ITERATIONS,
        confidence_threshold=config.patterns.CONFIDENCE_THRESHOLD,
        max_lag=config.patterns.MAX_SEASONAL_LAG,
        include_anomalies=config.patterns.INCLUDE_ANOMALIES,
        include_outliers=config.patterns.INCLUDE_OUTLIERS
    )
    return {"patterns": [pattern.to_dict() for pattern in results]}

@app.get("/analysis/status/{project_name}", response_model=StatusResponse)
async def get_analysis_status(project_name: str):
    """Get the status of an analysis run"""
    status = _get_pipeline().get_analysis_status(project_name)

    if status.get("status") == "not_found":
        raise HTTPException(status_code=404, detail="Project not found")
    if status.get("status") == "error":
        raise HTTPException(status_code=500, detail=status.get("error"))

    return StatusResponse(
        status=status.get("status", "unknown"),
        current_step=status.get("current_step"),
        next_action=status.get("next_action"),
        execution_log=status.get("execution_log", [])
    )

@app.get("/analysis/projects")
async def list_projects():
    """List analysis runs"""
    return {"projects": _get_pipeline().list_projects()}

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Insight Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    setup_logging(log_level=config.logging_level, log_dir=config.log_dir)
    uvicorn.run(
        "insight_engine.api.main:app",
        host=config.api.DEFAULT_HOST,
        port=config.api.DEFAULT_PORT,
        workers=config.api.WORKERS,
        log_level="info"
    )
