"""
releasegate: security-gated release pipeline for containerized services

releasegate runs the build, test and security-scan stages of a release,
gates each stage on normalized scanner findings, rolls the image out to
ECS and tells the right team what happened:
- Normalizes gitleaks, SonarQube, npm audit, Snyk and Trivy reports
- Gates on severity under a warn_only, strict or fail_fast policy
- Deploys to ECS and verifies the rollout independently
- Routes the outcome to the application or operations channel

Usage:
    from releasegate import ReleasePipeline

    # Or use CLI:
    $ releasegate run --mode strict
"""

__version__ = "0.3.0"

# Core functionality
from .config import get_settings
from .logging import get_logger

# Main pipeline class for programmatic use
from .orchestrator.pipeline import ReleasePipeline

__all__ = ["ReleasePipeline", "get_settings", "get_logger", "__version__"]
