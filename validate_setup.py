#!/usr/bin/env python3
"""
Validation script to check if the setup is correct.
Run this after installation to verify all components are working.
"""
import sys


def check_imports():
    """Check if all modules can be imported."""
    errors = []
    modules = [
        ("callpolicy.models", "Models"),
        ("callpolicy.factories.state_contract", "State contract"),
        ("callpolicy.factories.compliance", "Compliance engine"),
        ("callpolicy.factories.reward", "Reward engine"),
        ("callpolicy.factories.state_projector", "State projector"),
        ("callpolicy.factories.policy_learner", "Policy learners"),
        ("callpolicy.factories.borrower", "Borrower simulators"),
        ("callpolicy.factories.environment", "Environment"),
        ("callpolicy.factories.metrics", "Metrics"),
        ("training.runner", "Runner"),
        ("training.experiment", "Experiments"),
    ]
    for module, label in modules:
        try:
            __import__(module)
            print(f"✓ {label} imported successfully")
        except Exception as e:
            errors.append(f"✗ Error importing {label}: {e}")

    return errors


def check_dependencies():
    """Check if all required dependencies are installed."""
    required = [
        'pandas',
        'numpy',
        'pydantic',
        'openai',
        'dotenv',
    ]

    errors = []
    for package in required:
        try:
            __import__(package)
            print(f"✓ {package} installed")
        except ImportError:
            errors.append(f"✗ {package} not installed")

    return errors


def check_smoke():
    """Play one scripted episode end to end."""
    errors = []
    try:
        from callpolicy.factories.persona_forge import get_persona
        from callpolicy.factories.policy_learner import create_learner
        from training.experiment import build_environment
        from training.runner import run_episode

        env = build_environment(seed=0)
        metrics = run_episode(env, create_learner("heuristic", seed=0), train=False,
                              persona=get_persona("cooperative_stable"))
        print(f"✓ Scripted episode finished: {metrics.outcome} in {metrics.length} turns")
    except Exception as e:
        errors.append(f"✗ Smoke episode failed: {e}")
    return errors


def check_env():
    """Check environment configuration."""
    import os
    from pathlib import Path

    errors = []

    if not Path('.env.example').exists():
        errors.append("✗ .env.example not found")
    else:
        print("✓ .env.example exists")

    if not os.getenv('OPENAI_API_KEY'):
        print("⚠ OPENAI_API_KEY not set (only needed with --llm)")
    else:
        print("✓ OPENAI_API_KEY is set")

    return errors


def main():
    """Run all validation checks."""
    print("=" * 60)
    print("Validating callpolicy setup")
    print("=" * 60)

    print("\n1. Checking dependencies...")
    dep_errors = check_dependencies()

    print("\n2. Checking imports...")
    import_errors = check_imports()

    print("\n3. Checking environment...")
    env_errors = check_env()

    print("\n4. Running a scripted episode...")
    smoke_errors = check_smoke() if not import_errors else []

    all_errors = dep_errors + import_errors + env_errors + smoke_errors

    print("\n" + "=" * 60)
    if all_errors:
        print("❌ Validation failed with errors:")
        for error in all_errors:
            print(f"  {error}")
        print("\nPlease fix the errors and run validation again.")
        sys.exit(1)
    else:
        print("✅ All validation checks passed!")
        print("\nYou can now train:")
        print("  python scripts/train.py all --quick")
    print("=" * 60)


if __name__ == "__main__":
    main()
