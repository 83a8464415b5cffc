# insight_engine/agents/report_agent.py
"""
Report prompt assembly for the generative-AI report step.

The request is an immutable value built in one go by a factory; rendering it
produces the prompt text only, the network call lives outside this package.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple
from dataclasses import dataclass, field, asdict
from datetime import datetime
import logging
from jinja2 import Template

from insight_engine.agents.field_agent import Dataset, dataset_fields

logger = logging.getLogger(__name__)

DEFAULT_QUERY = 'Analyze our marketing performance and provide actionable insights'


@dataclass(frozen=True)
class UserQuery:
    query: str
    context: Optional[str] = None
    requirements: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DatasetSummary:
    name: str
    record_count: int
    fields: Tuple[str, ...]
    type: str = 'marketing_metrics'
    sample: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None


@dataclass(frozen=True)
class DataContext:
    datasets: Tuple[DatasetSummary, ...]
    total_records: int
    data_quality: float = 0.8
    last_updated: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass(frozen=True)
class ReportSection:
    title: str
    description: str
    required: bool = True
    order: Optional[int] = None


DEFAULT_SECTIONS = (
    ReportSection('Executive Summary', 'High-level overview of key findings', True, 1),
    ReportSection('Performance Metrics', 'Detailed performance analysis', True, 2),
    ReportSection('Recommendations', 'Actionable recommendations', True, 3),
)


@dataclass(frozen=True)
class ReportRequirements:
    report_type: str
    target_audience: str = 'business'      # technical | business | executive | client
    delivery_format: str = 'json'          # pdf | html | json | markdown
    sections: Tuple[ReportSection, ...] = DEFAULT_SECTIONS
    include_recommendations: bool = True
    confidence_indicators: bool = True


@dataclass(frozen=True)
class SecurityContext:
    data_sensitivity: str = 'internal'     # public | internal | confidential | restricted
    compliance_requirements: Tuple[str, ...] = ()
    encryption_level: str = 'basic'


@dataclass(frozen=True)
class InsightPromptRequest:
    """Everything the report model needs, fixed at construction time."""
    user_query: UserQuery
    data_context: DataContext
    report_requirements: ReportRequirements
    analysis: Dict[str, Any] = field(default_factory=dict)
    security_context: SecurityContext = SecurityContext()
    priority: str = 'medium'
    tags: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.user_query.query.strip():
            raise ValueError('User query is required')
        if not self.data_context.datasets:
            raise ValueError('Data context needs at least one dataset')
        if not self.report_requirements.report_type:
            raise ValueError('Report type is required')

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_analysis(cls, records: Dataset,
                      statistics: Dict[str, Dict[str, Any]],
                      correlations: Sequence[Dict[str, Any]],
                      patterns: Sequence[Dict[str, Any]],
                      query: str = DEFAULT_QUERY,
                      dataset_name: str = 'Uploaded dataset') -> 'InsightPromptRequest':
        """Build a request around the results of one analysis run"""
        summary = DatasetSummary(
            name=dataset_name,
            record_count=len(records),
            fields=tuple(dataset_fields(records)),
            sample=dict(records[0]) if records else {},
        )
        return cls(
            user_query=UserQuery(query, 'Marketing performance analysis for data-driven decision making'),
            data_context=DataContext(datasets=(summary,), total_records=len(records)),
            report_requirements=ReportRequirements(report_type='marketing_insights'),
            analysis={
                'statistics': dict(statistics),
                'correlations': list(correlations),
                'patterns': list(patterns),
            },
        )


def create_marketing_insights_prompt(datasets: Sequence[DatasetSummary],
                                     query: str = DEFAULT_QUERY) -> InsightPromptRequest:
    """Standard marketing-insights request for one or more datasets"""
    return InsightPromptRequest(
        user_query=UserQuery(query, 'Marketing performance analysis for data-driven decision making'),
        data_context=DataContext(
            datasets=tuple(datasets),
            total_records=sum(dataset.record_count for dataset in datasets),
        ),
        report_requirements=ReportRequirements(report_type='marketing_insights'),
        security_context=SecurityContext('internal', ('gdpr', 'marketing_compliance'), 'basic'),
    )


PROMPT_TEMPLATE = Template("""You are a senior marketing analyst.

## Request
{{ request.user_query.query }}
{% if request.user_query.context %}Context: {{ request.user_query.context }}
{% endif %}{% for requirement in request.user_query.requirements %}- {{ requirement }}
{% endfor %}
## Data
{% for dataset in request.data_context.datasets %}- {{ dataset.name }} ({{ dataset.type }}): {{ dataset.record_count }} records; fields: {{ dataset.fields | join(', ') }}
{% endfor %}Total records: {{ request.data_context.total_records }}
{% if statistics %}
## Descriptive statistics
{% for name, stats in statistics.items() %}- {{ name }}: mean={{ '%.4g' % stats.mean }}, median={{ '%.4g' % stats.median }}, sd={{ '%.4g' % stats.standardDeviation }}, min={{ '%.4g' % stats.min }}, max={{ '%.4g' % stats.max }}, outliers={{ stats.outliers | length }}
{% endfor %}{% endif %}{% if correlations %}
## Correlations
{% for c in correlations %}- {{ c.field1 }} vs {{ c.field2 }}: r={{ '%.3f' % c.correlation }} ({{ c.strength }} {{ c.direction }}){% if c.pValue is defined %}, p={{ '%.3g' % c.pValue }}{% endif %}
{% endfor %}{% endif %}{% if patterns %}
## Detected patterns
{% for p in patterns %}- [{{ p.type }}] {{ p.field }}: {{ p.description }} (confidence {{ '%.2f' % p.confidence }}, {{ p.strength }})
{% endfor %}{% endif %}
## Report
Type: {{ request.report_requirements.report_type }}; audience: {{ request.report_requirements.target_audience }}; format: {{ request.report_requirements.delivery_format }}
Sections:
{% for section in sections %}{{ loop.index }}. {{ section.title }}{% if section.required %} (required){% endif %}: {{ section.description }}
{% endfor %}{% if request.report_requirements.confidence_indicators %}State a confidence level for every insight.
{% endif %}Data sensitivity: {{ request.security_context.data_sensitivity }}.
""")


def render_prompt(request: InsightPromptRequest, max_correlations: int = 10,
                  max_patterns: int = 20) -> str:
    """Render the request into the prompt text for the report model"""
    sections = sorted(request.report_requirements.sections,
                      key=lambda s: s.order if s.order is not None else len(DEFAULT_SECTIONS) + 1)
    return PROMPT_TEMPLATE.render(
        request=request,
        statistics=request.analysis.get('statistics', {}),
        correlations=list(request.analysis.get('correlations', []))[:max_correlations],
        patterns=list(request.analysis.get('patterns', []))[:max_patterns],
        sections=sections,
    )


class ReportAgent:
    """Pipeline node that assembles the report prompt from the analysis results"""

    def __init__(self, query: str = DEFAULT_QUERY):
        self.query = query

    async def process(self, state: dict) -> dict:
        logger.info("Starting report prompt assembly")

        try:
            records = state.get('cleaned_data', state.get('records', []))
            request = InsightPromptRequest.from_analysis(
                records,
                state.get('statistics', {}),
                state.get('correlations', []),
                state.get('patterns', []),
                query=state.get('report_query') or self.query,
                dataset_name=state.get('project_name', 'Uploaded dataset'),
            )

            state.update({
                'report_prompt': render_prompt(request),
                'current_step': 'report',
                'next_action': 'completed'
            })

            state['execution_log'].append("Report prompt assembled")
            return state

        except Exception as e:
            logger.error(f"Report prompt assembly failed: {str(e)}")
            state['errors'].append(f"Report prompt error: {str(e)}")
            state['next_action'] = 'error'
            return state
