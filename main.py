import asyncio
import argparse
import json
import sys
from pathlib import Path
from insight_engine.pipeline import AnalysisPipeline
from insight_engine.utils.logging_config import setup_logging, configure_third_party_logging
from insight_engine.config import get_config

def main():
    """Main entry point for the analysis engine"""
    parser = argparse.ArgumentParser(description="Marketing data insight engine")
    parser.add_argument("--data-path", required=True, help="Path to a JSON array of records")
    parser.add_argument("--project-name", help="Name of the analysis run")
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--seed", type=int, help="Seed for k-means initialisation")
    parser.add_argument("--output", help="Write the full result as JSON to this path")

    args = parser.parse_args()

    # Load configuration
    config = get_config(args.config)

    # Setup logging
    setup_logging(log_level=args.log_level, log_dir=config.log_dir)
    configure_third_party_logging()

    # Validate data path exists
    data_path = Path(args.data_path)
    if not data_path.exists():
        print(f"Error: Data file not found at {args.data_path}")
        sys.exit(1)

    with open(data_path, 'r', encoding='utf-8') as f:
        records = json.load(f)

    async def run_analysis():
        """Run the analysis pipeline"""
        try:
            pipeline = AnalysisPipeline(config)

            result = await pipeline.run_analysis(
                records=records,
                project_name=args.project_name,
                random_state=args.seed
            )

            if result.get('status') == 'failed':
                problems = result.get('error') or result.get('errors') or \
                    (result.get('validation_report') or {}).get('errors')
                print(f"❌ Analysis failed: {problems}")
                sys.exit(1)

            print("🎉 Analysis completed successfully!")
            print(f"Project: {result.get('project_name')}")
            print(f"Numeric fields: {', '.join(result.get('numeric_fields') or []) or 'none'}")
            print(f"Correlations surfaced: {len(result.get('correlations') or [])}")
            print(f"Patterns detected: {len(result.get('patterns') or [])}")

            for pattern in result.get('patterns') or []:
                print(f"  - [{pattern['type']}] {pattern['field']}: {pattern['description']}")

            if args.output:
                keys = ['project_name', 'statistics', 'correlations', 'patterns',
                        'column_profiles', 'report_prompt', 'errors']
                with open(args.output, 'w', encoding='utf-8') as f:
                    json.dump({key: result.get(key) for key in keys}, f, indent=2)
                print(f"Results written to {args.output}")

        except Exception as e:
            print(f"❌ Analysis failed with error: {str(e)}")
            sys.exit(1)

    asyncio.run(run_analysis())

if __name__ == "__main__":
    main()
