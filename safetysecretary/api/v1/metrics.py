from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response

router = APIRouter()

# Metrics Definitions
QUEUE_DEPTH = Gauge('llm_job_queue_depth', 'Number of jobs waiting for the drain loop')
JOBS_ENQUEUED = Counter('llm_jobs_enqueued_total', 'Total jobs accepted', ['type'])
JOBS_FINISHED = Counter('llm_jobs_finished_total', 'Total jobs reaching a terminal state', ['type', 'status'])  # status=completed|failed
JOB_TIMEOUTS = Counter('llm_job_timeouts_total', 'Total jobs failed by the handler deadline', ['type'])

JOB_DURATION = Histogram('llm_job_duration_seconds', 'Time from running to terminal', ['type'], buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0])

JOBS_RETAINED = Gauge(
    "llm_jobs_retained",
    "Number of job records held in memory"
)

JOBS_EVICTED = Counter(
    "llm_jobs_evicted_total",
    "Total terminal jobs dropped by the retention policy"
)

TENANT_HANDLES = Gauge(
    "tenant_handles_live",
    "Number of cached tenant database handles"
)

@router.get("/metrics")
async def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
