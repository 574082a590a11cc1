"""struct_eigen command-line interface."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys

import numpy as np

_SUPPORTS = {
    # name: (base condition, tip condition)
    "pinned": ({"type": "pinned"}, {"type": "roller"}),
    "cantilever": ({"type": "fixed"}, None),
    "fixed": ({"type": "fixed"}, {"dofs": [1, 2]}),
}


def _add_model_args(p):
    p.add_argument("--length", type=float, default=1.0, help="Member length [m]")
    p.add_argument("--elements", type=int, default=20)
    p.add_argument("--youngs-modulus", type=float, default=200e9, help="[Pa]")
    p.add_argument("--density", type=float, default=7850.0, help="[kg/m^3]")
    p.add_argument("--width", type=float, default=0.02, help="Section width [m]")
    p.add_argument("--thickness", type=float, default=0.01, help="Section thickness [m]")
    p.add_argument("--supports", default="pinned", choices=sorted(_SUPPORTS))
    p.add_argument("--config", help="YAML configuration file")
    p.add_argument("--num-eigvals", type=int)
    p.add_argument("--max-lanczos-vecs", type=int)
    p.add_argument("--eig-tol", type=float)
    p.add_argument("--sigma", type=float)
    p.add_argument("--solver", choices=["direct", "krylov"])
    p.add_argument("--sensitivity", action="store_true",
                   help="Print the thickness gradient of the first eigenvalue")
    p.add_argument("--output", help="Write results as JSON to this file")
    p.add_argument("--log-dir", help="Directory for structured solve logs")


def _build_parser():
    parser = argparse.ArgumentParser(
        prog="struct-eigen",
        description="Buckling and natural-frequency analysis of beam-column members",
    )
    parser.add_argument("--version", action="version", version="struct_eigen v0.1.0")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="command")

    buckle = sub.add_parser("buckle", help="Linearized buckling load factors")
    _add_model_args(buckle)
    buckle.add_argument("--load", type=float, default=1000.0,
                        help="Compressive tip load [N]")

    modes = sub.add_parser("modes", help="Natural frequencies and mode shapes")
    _add_model_args(modes)
    modes.add_argument("--target-frequency", type=float,
                       help="Shift the spectrum towards this frequency [Hz]")

    return parser


def _load_config(args):
    from struct_eigen.core.config import AppConfig

    config = AppConfig(args.config)
    config.update({
        "eigen.num_eigvals": args.num_eigvals,
        "eigen.max_lanczos_vecs": args.max_lanczos_vecs,
        "eigen.eig_tol": args.eig_tol,
        "eigen.sigma": args.sigma,
        "linear_solver.type": args.solver,
    })
    return config


def _build_model(args, load=None):
    from struct_eigen.analysis.config import BeamMesh, BeamModel

    mesh = BeamMesh.straight(args.length, args.elements)
    base, tip = _SUPPORTS[args.supports]
    bcs = [dict(base, node_set="base")]
    if tip is not None:
        bcs.append(dict(tip, node_set="tip"))

    load_cases = {}
    if load is not None:
        load_cases[0] = [{
            "type": "force",
            "node_set": "tip",
            "direction": [-1.0, 0.0],
            "magnitude": load,
        }]

    return BeamModel(
        mesh=mesh,
        E_pa=args.youngs_modulus,
        rho_kg_m3=args.density,
        width_m=args.width,
        thickness_m=np.array([args.thickness]),
        boundary_conditions=bcs,
        load_cases=load_cases,
    )


def _structured_logger(args, config):
    if not args.log_dir:
        return None
    from struct_eigen.core.logger import StructuredLogger

    return StructuredLogger(args.log_dir, level=config.get("logging.level", "INFO"))


def _print_table(title, header, rows):
    print("=" * 60)
    print("  %s" % title)
    print("=" * 60)
    print("  %s" % header)
    for row in rows:
        print("  %s" % row)


def _print_summary(result, analysis):
    print()
    print("  Converged:     %s" % ("yes" if result.converged else "NO"))
    print("  Lanczos vecs:  %d" % result.n_iterations)
    print("  Solve time:    %.3f s" % result.solve_time_s)
    print("  Orthogonality: %.2e" % analysis.check_orthogonality())


def _print_sensitivity(analysis, label):
    grad = analysis.eval_eigen_dv_sens(0)
    print()
    print("  --- d(%s)/d(thickness) per element ---" % label)
    for i, g in enumerate(grad):
        print("  elem %3d  %14.6e" % (i, float(np.real(g))))
    return grad


def _write_output(path, payload):
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    print("  JSON results: %s" % path)


def _run(args, analysis, label, rows_fn):
    from struct_eigen.core.errors import LinearSolveFailure, NonConvergence

    try:
        result = analysis.solve()
    except LinearSolveFailure as exc:
        print("Linear solve failed: %s" % exc, file=sys.stderr)
        return 1, None
    except NonConvergence as exc:
        print("Eigensolver did not converge: %s" % exc, file=sys.stderr)
        return 2, None

    rows, payload = rows_fn(analysis)
    _print_table(label, rows[0], rows[1:])
    _print_summary(result, analysis)
    if getattr(args, "sensitivity", False) and analysis.num_converged:
        grad = _print_sensitivity(analysis, "lambda")
        payload["sensitivity"] = [float(np.real(g)) for g in grad]
    print("=" * 60)

    payload["converged"] = bool(result.converged)
    payload["n_iterations"] = int(result.n_iterations)
    if args.output:
        _write_output(args.output, payload)
    return 0, result


def _do_buckle(args):
    from struct_eigen.analysis.beam_assembler import BeamColumnAssembler
    from struct_eigen.analysis.buckling import LinearBuckling
    from struct_eigen.analysis.config import LanczosConfig
    from struct_eigen.analysis.linear_solver import create_linear_solver

    config = _load_config(args)
    assembler = BeamColumnAssembler(_build_model(args, load=args.load))
    analysis = LinearBuckling(
        assembler,
        load_case=0,
        sigma=float(config.get("eigen.sigma", 0.0)),
        solver=create_linear_solver(config),
        config=LanczosConfig.from_app_config(config),
        structured_logger=_structured_logger(args, config),
    )

    def rows(a):
        lines = ["%4s  %14s  %14s  %10s" % ("mode", "load factor", "load [N]", "error")]
        factors = []
        for i in range(a.num_converged):
            value, err = a.extract_eigenvalue(i)
            value = float(np.real(value))
            factors.append(value)
            lines.append("%4d  %14.6e  %14.6e  %10.2e" % (i, value, value * args.load, err))
        return lines, {"analysis": "buckling", "load_factors": factors}

    code, _ = _run(args, analysis, "Linear Buckling Analysis", rows)
    return code


def _do_modes(args):
    from struct_eigen.analysis.beam_assembler import BeamColumnAssembler
    from struct_eigen.analysis.config import FrequencyConfig, LanczosConfig
    from struct_eigen.analysis.frequency import FrequencyAnalysis
    from struct_eigen.analysis.linear_solver import create_linear_solver

    config = _load_config(args)
    freq_config = FrequencyConfig(
        sigma=float(config.get("eigen.sigma", 0.0)),
        target_frequency_hz=args.target_frequency,
        lanczos=LanczosConfig.from_app_config(config),
    )
    assembler = BeamColumnAssembler(_build_model(args))
    analysis = FrequencyAnalysis.from_config(
        assembler,
        freq_config,
        solver=create_linear_solver(config),
        structured_logger=_structured_logger(args, config),
    )

    def rows(a):
        lines = ["%4s  %14s  %14s  %10s" % ("mode", "omega^2", "freq [Hz]", "error")]
        freqs = []
        for i in range(a.num_converged):
            value, err = a.extract_eigenvalue(i)
            hz = a.extract_frequency(i)
            freqs.append(hz)
            lines.append("%4d  %14.6e  %14.6f  %10.2e" % (i, float(np.real(value)), hz, err))
        return lines, {"analysis": "frequency", "frequencies_hz": freqs}

    code, _ = _run(args, analysis, "Natural Frequency Analysis", rows)
    return code


def main(argv=None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.command == "buckle":
        return _do_buckle(args)
    elif args.command == "modes":
        return _do_modes(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
