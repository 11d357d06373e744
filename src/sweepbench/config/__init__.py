from .sweep import ErrorPolicy, StepSpec, SweepConfig, SweepPlan, load_sweep_plan, render

__all__ = [
    "ErrorPolicy",
    "StepSpec",
    "SweepConfig",
    "SweepPlan",
    "load_sweep_plan",
    "render",
]
