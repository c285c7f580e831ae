from __future__ import annotations

import argparse
from pathlib import Path

from aws_provisioner.config import apply, engine_from_config, load, outputs, plan


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    if event == "start":
        print(f"[apply:start] {address}")
    else:
        print(f"[apply:done]  {address}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply aws-provisioner config via Python API")
    parser.add_argument("--config", default="aws-provisioner.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan the removal of everything")
    parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip refresh during plan",
    )
    args = parser.parse_args()

    config = load(Path(args.config))
    engine = engine_from_config(config)

    # Hold the state lock from plan through apply.
    with engine.locked():
        plan_obj = plan(
            config, destroy=args.destroy, refresh=not args.no_refresh, engine=engine
        )
        print("Plan summary:", plan_obj.summary())
        for change in plan_obj.changes:
            wave = "" if change.wave is None else f" (wave {change.wave})"
            print(f"- {change.action.value:7} {change.address}{wave}")

        if args.apply:
            result = apply(plan_obj, config, progress=_progress, engine=engine)
            print("Apply summary:", result.summary())
            for name, value in outputs(config, engine=engine).items():
                print(f"{name} = {value}")


if __name__ == "__main__":
    main()
