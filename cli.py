"""magnetostatic-fem command-line interface."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import uuid


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="magnetostatic-fem",
        description="Axisymmetric magnetostatic FEM solver on rectangular grids",
    )
    parser.add_argument("--version", action="version", version="magnetostatic-fem v0.1.0")

    sub = parser.add_subparsers(dest="command")

    solve = sub.add_parser("solve", help="Solve a two-layer case and query A and |B|")
    solve.add_argument("--config", help="YAML case file merged over the defaults")
    solve.add_argument("--nonlinear", action="store_true",
                       help="Run the relaxation loop with B-H dependent materials")
    solve.add_argument("--solver", choices=["los_lu", "los_llt"],
                       help="Override solver.type from the configuration")
    solve.add_argument("--point", nargs=2, type=float, action="append", metavar=("R", "Z"),
                       help="Query point (repeatable); defaults to the middle of each layer")
    solve.add_argument("--output", help="Write the results as JSON to this file")
    solve.add_argument("--log-dir", help="Write app.log and JSONL run records here")

    return parser


def _default_points(info):
    r_mid = 0.5 * (info.r0 + info.width)
    z1 = info.z0 + 0.5 * info.first_layer_height
    z2 = info.z0 + info.first_layer_height + 0.5 * info.second_layer_height
    return [(r_mid, z1), (r_mid, z2)]


def _do_solve(args):
    from magnetostatic_fem.core.config import AppConfig
    from magnetostatic_fem.core.logger import StructuredLogger
    from magnetostatic_fem.fea.config import NonlinearProblemConfig, ProblemConfig, SolverType
    from magnetostatic_fem.fea.errors import ElementNotFoundError, FEMError
    from magnetostatic_fem.fea.mesher import GridBuilder, GridInfo
    from magnetostatic_fem.fea.problem import NonlinearProblem, Problem

    try:
        config = AppConfig(args.config)
    except ValueError as exc:
        print("Error: %s" % exc, file=sys.stderr)
        return 2
    if args.solver:
        config.set("solver.type", args.solver)
    logging.basicConfig(
        level=getattr(logging, str(config.get("logging.level", "INFO")).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    structured = StructuredLogger(args.log_dir) if args.log_dir else None
    session_id = uuid.uuid4().hex[:12]

    try:
        info = GridInfo.from_app_config(config)
        mesh = GridBuilder(info).build()
        if args.nonlinear:
            problem = NonlinearProblem(NonlinearProblemConfig.from_app_config(mesh, config))
            observer = structured.iteration_observer(session_id) if structured else None
            result = problem.solve(observer=observer)
        else:
            problem = Problem(ProblemConfig.from_app_config(mesh, config))
            result = problem.solve()
    except (FEMError, ValueError) as exc:
        print("Error: %s" % exc, file=sys.stderr)
        return 2

    points = args.point or _default_points(info)
    rows = []
    for r, z in points:
        try:
            rows.append({"r": r, "z": z,
                         "A": problem.get_value_a((r, z)),
                         "B": problem.get_value_b((r, z))})
        except ElementNotFoundError:
            rows.append({"r": r, "z": z, "A": None, "B": None})

    summary = {
        "session_id": session_id,
        "solver": SolverType(config.get("solver.type")).value,
        "nodes": mesh.node_count,
        "elements": len(mesh.elements),
        "solve_time_s": result.solve_time_s,
    }
    if args.nonlinear:
        summary.update(state=result.state.value, converged=result.converged,
                       iterations=result.iterations, diff=result.diff)
    else:
        summary.update(solver_iterations=result.solver_iterations)

    if structured:
        structured.log_solve(session_id, result, inputs={"config": args.config, "points": points})

    # Print results
    print("=" * 60)
    print("  Magnetostatic Solve Result")
    print("=" * 60)
    for k, v in summary.items():
        print("  %-18s %s" % (k, v))
    print()
    print("  %12s %12s %16s %16s" % ("R", "Z", "A", "|B|"))
    for row in rows:
        if row["A"] is None:
            print("  %12.6g %12.6g %16s %16s" % (row["r"], row["z"], "outside", "outside"))
        else:
            print("  %12.6g %12.6g %16.8e %16.8e" % (row["r"], row["z"], row["A"], row["B"]))
    print("=" * 60)

    if args.output:
        out_dir = os.path.dirname(os.path.abspath(args.output))
        os.makedirs(out_dir, exist_ok=True)
        with open(args.output, "w", encoding="utf-8") as f:
            json.dump({"summary": summary, "points": rows}, f, indent=2)
        print("  JSON report: %s" % args.output)

    if args.nonlinear and not result.converged:
        return 1
    return 0


def main():
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "solve":
        return _do_solve(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
