# insight_engine/pipeline.py
from langgraph.graph import StateGraph, END
from langgraph.checkpoint.memory import MemorySaver
from typing import TypedDict, Optional, List, Dict, Any
from datetime import datetime
import logging

from insight_engine.config import Config, get_config
from insight_engine.utils.logging_config import PipelineLogger

logger = logging.getLogger(__name__)

class AnalysisState(TypedDict, total=False):
    """State shared across all analysis nodes"""
    # Input
    records: List[Dict[str, Any]]
    project_name: str
    cleaning_options: Optional[Dict[str, bool]]
    random_state: Optional[int]
    report_query: Optional[str]

    # Preparation
    validation_report: Optional[dict]
    cleaned_data: Optional[List[Dict[str, Any]]]
    cleaning_report: Optional[dict]
    numeric_fields: Optional[List[str]]
    column_profiles: Optional[List[dict]]

    # Analysis
    statistics: Optional[Dict[str, dict]]
    correlations: Optional[List[dict]]
    patterns: Optional[List[dict]]
    report_prompt: Optional[str]

    # Workflow
    current_step: str
    next_action: str
    errors: List[str]
    execution_log: List[str]

class AnalysisPipeline:
    def __init__(self, config: Optional[Config] = None):
        """Initialize the analysis pipeline"""
        self.config = config or get_config()

        # Initialize checkpointer for state persistence
        self.checkpointer = MemorySaver()
        self._projects: List[str] = []

        # Build the graph
        self.graph = self._build_graph()
        self.compiled_graph = self.graph.compile(checkpointer=self.checkpointer)

        logger.info("Analysis pipeline initialized successfully")

    def _build_graph(self) -> StateGraph:
        """Build the LangGraph workflow"""
        from insight_engine.agents.cleaning_agent import CleaningAgent
        from insight_engine.agents.field_agent import FieldTypingAgent
        from insight_engine.agents.statistics_agent import StatisticsAgent
        from insight_engine.agents.correlation_agent import CorrelationAgent
        from insight_engine.agents.pattern_agent import PatternAgent
        from insight_engine.agents.report_agent import ReportAgent

        patterns_config = self.config.patterns

        # Initialize agents
        cleaning_agent = CleaningAgent(
            options=self.config.get_cleaning_options(),
            max_records=self.config.cleaning.MAX_RECORDS
        )
        field_agent = FieldTypingAgent()
        statistics_agent = StatisticsAgent(multiplier=self.config.statistics.OUTLIER_MULTIPLIER)
        correlation_agent = CorrelationAgent(
            threshold=self.config.correlation.REPORT_THRESHOLD,
            include_p_values=self.config.correlation.INCLUDE_P_VALUES
        )
        pattern_agent = PatternAgent(
            random_state=patterns_config.RANDOM_STATE,
            k=patterns_config.KMEANS_K,
            max_iterations=patterns_config.KMEANS_MAX_ITERATIONS,
            confidence_threshold=patterns_config.CONFIDENCE_THRESHOLD,
            max_lag=patterns_config.MAX_SEASONAL_LAG,
            include_anomalies=patterns_config.INCLUDE_ANOMALIES,
            include_outliers=patterns_config.INCLUDE_OUTLIERS
        )
        report_agent = ReportAgent()

        workflow = StateGraph(AnalysisState)

        # Add nodes
        workflow.add_node("validation", cleaning_agent.validate)
        workflow.add_node("cleaning", cleaning_agent.clean)
        workflow.add_node("field_typing", field_agent.process)
        workflow.add_node("statistics", statistics_agent.process)
        workflow.add_node("correlations", correlation_agent.process)
        workflow.add_node("patterns", pattern_agent.process)
        workflow.add_node("report", report_agent.process)

        workflow.set_entry_point("validation")

        # Invalid records stop the run before any analysis
        workflow.add_conditional_edges(
            "validation",
            self._route_after_validation,
            {
                "proceed": "cleaning",
                "error": END
            }
        )

        # The analysis nodes are independent readers of the cleaned rows
        workflow.add_edge("cleaning", "field_typing")
        workflow.add_edge("field_typing", "statistics")
        workflow.add_edge("statistics", "correlations")
        workflow.add_edge("correlations", "patterns")
        workflow.add_edge("patterns", "report")
        workflow.add_edge("report", END)

        return workflow

    @staticmethod
    def _derive_status(state: dict) -> str:
        """Analysis nodes run to the end even after one fails, so recorded errors decide"""
        next_action = state.get("next_action")
        if next_action == "error" or state.get("errors"):
            return "failed"
        if next_action == "completed":
            return "completed"
        return "running"

    def _route_after_validation(self, state: AnalysisState) -> str:
        """Route based on record validation results"""
        validation_report = state.get("validation_report") or {}
        return "proceed" if validation_report.get("is_valid", False) else "error"

    async def run_analysis(self,
                           records: List[Dict[str, Any]],
                           project_name: Optional[str] = None,
                           cleaning_options: Optional[Dict[str, bool]] = None,
                           random_state: Optional[int] = None,
                           report_query: Optional[str] = None) -> dict:
        """Execute the complete analysis over one dataset snapshot"""

        if project_name is None:
            project_name = f"analysis_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        initial_state = AnalysisState(
            records=records,
            project_name=project_name,
            cleaning_options=cleaning_options,
            random_state=random_state,
            report_query=report_query,
            current_step="initialization",
            next_action="validation",
            errors=[],
            execution_log=[f"Analysis started at {datetime.now()}"]
        )

        logger.info(f"Starting analysis for project: {project_name}")

        try:
            config = {"configurable": {"thread_id": project_name}}

            with PipelineLogger(f"analysis {project_name}", logger) as step:
                final_state = await self.compiled_graph.ainvoke(initial_state, config=config)
                step.log_metric("errors", len(final_state.get("errors", [])))

            if project_name not in self._projects:
                self._projects.append(project_name)

            final_state["execution_log"].append(f"Analysis completed at {datetime.now()}")
            final_state["status"] = self._derive_status(final_state)
            return final_state

        except Exception as e:
            logger.error(f"Analysis failed for {project_name}: {str(e)}")
            return {
                "status": "failed",
                "error": str(e),
                "project_name": project_name
            }

    def get_analysis_status(self, project_name: str) -> dict:
        """Get the last checkpointed state of an analysis run"""
        config = {"configurable": {"thread_id": project_name}}

        try:
            snapshot = self.compiled_graph.get_state(config)
            state = snapshot.values if snapshot is not None else None
            if not state:
                return {"status": "not_found"}

            return {
                "status": self._derive_status(state),
                "current_step": state.get("current_step"),
                "next_action": state.get("next_action"),
                "errors": state.get("errors", []),
                "execution_log": state.get("execution_log", [])
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}

    def list_projects(self) -> list:
        """List analysis runs started by this pipeline instance"""
        return list(self._projects)
