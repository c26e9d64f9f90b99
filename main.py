#!/usr/bin/env python3
"""buildgate - phase tracking, review gates and convergence loops for agent-built projects.

Usage:
    python main.py init --name alice --languages python        # save developer profile
    python main.py status                                        # current phase/epic
    python main.py resume                                        # context for an interrupted run
    python main.py advance                                       # next phase in order
    python main.py transition BUILDING                           # explicit transition
    python main.py start-epic 2
    python main.py reset --yes
    python main.py review                                        # review panel + sign-off
    python main.py adversarial --max-iterations 3                # review/verify/fix loop
    python main.py adversarial --approve                         # ... asking before each fix
    python main.py improve --max-depth 5                         # improvement cycles
    python main.py verify findings.json
    python main.py trend
"""

import argparse
import json
import logging
import os
import sys

from config.defaults import DEFAULTS
from core.adversarial import (
    ApprovalDecision,
    format_findings_for_approval,
    generate_adversarial_summary,
    run_adversarial_loop,
)
from core.convergence import format_trend, load_convergence_state
from core.errors import BuildGateError
from core.orchestrator import PipelineOrchestrator
from core.review_pipeline import run_review_pipeline
from core.signoff import SignOffDecision, run_epic_sign_off
from core.state import DeveloperProfile, Finding, Phase
from core.store import load_profile, save_profile
from core.verifier import verify_findings

logger = logging.getLogger("buildgate")


def _orchestrator(args):
    return PipelineOrchestrator(args.project_dir, profile=load_profile(args.project_dir))


def _model(args):
    profile = load_profile(args.project_dir)
    return (profile.ai_model if profile and profile.ai_model else None) or DEFAULTS["model"]


def _print_progress(phase, status):
    print(f"  [{phase}] {status}")


def _ask_sign_off(summary):
    """Human-in-the-loop: show the epic summary, approve or reject with feedback."""
    print()
    print(summary.markdown)
    print()
    if summary.blocking_issues:
        print(f"{len(summary.blocking_issues)} blocking issue(s) outstanding.")

    try:
        answer = input("Approve this epic? [y/N]: ").strip().lower()
        if answer in ("y", "yes"):
            return SignOffDecision.approve()
        feedback = input("What should be fixed? ").strip()
    except (EOFError, KeyboardInterrupt):
        print()
        raise SystemExit("Sign-off aborted. Run 'review' again to resume.")

    return SignOffDecision.reject(feedback)


def _ask_approval(iteration, max_iterations, fixable, deferred):
    """Human-in-the-loop: choose which findings the fixer gets this iteration."""
    print()
    print(format_findings_for_approval(fixable, deferred))
    print()

    try:
        answer = input(
            f"Iteration {iteration}/{max_iterations}: fix {len(fixable)} finding(s)? "
            "[a]ll / [s]elect / s[k]ip / [q]uit: "
        ).strip().lower()
        if answer in ("k", "skip"):
            return ApprovalDecision.skip()
        if answer in ("q", "quit", "abort"):
            return ApprovalDecision.abort()
        if answer not in ("s", "select"):
            return ApprovalDecision.approve()
        ids = input("Finding ids to fix (comma or space separated): ")
    except (EOFError, KeyboardInterrupt):
        print()
        return ApprovalDecision.abort()

    selected = [i for i in ids.replace(",", " ").split() if i]
    if not selected:
        return ApprovalDecision.skip()
    return ApprovalDecision.filter(selected)


def cmd_init(args):
    profile = DeveloperProfile(
        name=args.name,
        languages=args.languages or [],
        backend_framework=args.backend or "",
        ai_model=args.model or "",
    )
    path = save_profile(args.project_dir, profile)
    print(f"Profile saved to {path}")


def cmd_status(args):
    print(_orchestrator(args).format_status())


def cmd_resume(args):
    print(_orchestrator(args).format_resume_context())


def cmd_advance(args):
    phase = _orchestrator(args).advance()
    print(f"Advanced to {phase}")


def cmd_transition(args):
    _orchestrator(args).transition(args.phase.upper())
    print(f"Transitioned to {args.phase.upper()}")


def cmd_start_epic(args):
    _orchestrator(args).start_epic(args.epic)
    print(f"Started epic {args.epic}")


def cmd_reset(args):
    if not args.yes:
        try:
            answer = input("Discard all pipeline progress? [y/N]: ").strip().lower()
        except (EOFError, KeyboardInterrupt):
            print()
            return
        if answer not in ("y", "yes"):
            print("Reset cancelled.")
            return
    _orchestrator(args).reset()
    print("Pipeline reset.")


def cmd_review(args):
    from agents.panel import default_fix_cycle_agents, default_review_agents

    orchestrator = _orchestrator(args)
    state = orchestrator.get_state()
    epic = args.epic if args.epic is not None else state.epic_number
    model = _model(args)

    print(f"Reviewing epic {epic}...")
    result = run_review_pipeline(
        args.project_dir, epic, default_review_agents(model), on_progress=_print_progress,
    )
    if state.phase == Phase.REVIEWING:
        orchestrator.transition(Phase.SIGN_OFF)

    outcome = run_epic_sign_off(
        args.project_dir,
        epic,
        result,
        sign_off_prompt=None if args.autonomous else _ask_sign_off,
        fix_cycle_agents=default_fix_cycle_agents(model),
        max_rejection_cycles=args.max_rejections,
        autonomous=args.autonomous,
    )
    print(f"\nSummary:  {outcome.summary.summary_path}")
    print(f"Approved: {'yes' if outcome.approved else 'NO'} "
          f"(rejection cycles: {outcome.rejection_cycles})")
    if not outcome.approved:
        sys.exit(2)


def cmd_adversarial(args):
    from agents.panel import default_fixer, default_loop_agents
    from agents.tester import make_test_suite_runner

    state = _orchestrator(args).get_state()
    epic = args.epic if args.epic is not None else state.epic_number
    model = _model(args)

    result = run_adversarial_loop(
        args.project_dir,
        epic,
        default_loop_agents(model),
        default_fixer(model),
        test_suite_runner=make_test_suite_runner(),
        max_iterations=args.max_iterations,
        on_progress=lambda i, phase, msg: print(f"  [iter {i}] {phase}: {msg}"),
        min_fix_severity=args.min_severity,
        approval_gate=_ask_approval if args.approve else None,
    )
    _, path = generate_adversarial_summary(args.project_dir, epic, result)
    print(f"\nExit reason: {result.exit_reason}")
    print(f"Fixed {result.total_fixed}, unresolved {len(result.unresolved_findings)}, "
          f"discarded {result.total_discarded}")
    print(f"Summary: {path}")


def cmd_improve(args):
    from agents.panel import default_fix_cycle_agents, default_fixer, default_loop_agents, make_analyzer, make_builder
    from agents.tester import make_test_suite_runner
    from core.improve import run_improve_loop

    model = _model(args)
    state = run_improve_loop(
        _orchestrator(args),
        args.project_dir,
        analyzer=make_analyzer(model),
        builder=make_builder(model),
        loop_agents=default_loop_agents(model),
        fixer=default_fixer(model),
        test_suite_runner=make_test_suite_runner(),
        max_depth=args.max_depth,
        threshold=args.threshold,
        autonomous=not args.interactive,
        sign_off_prompt=_ask_sign_off if args.interactive else None,
        fix_cycle_agents=default_fix_cycle_agents(model) if args.interactive else None,
        on_progress=_print_progress,
    )
    print()
    print(format_trend(state))


def cmd_verify(args):
    try:
        with open(args.findings) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        print(f"Error: cannot read findings from {args.findings}: {e}", file=sys.stderr)
        sys.exit(1)
    if isinstance(data, dict):
        data = data.get("findings", [])
    findings = [Finding.from_dict(item) for item in data]

    result = verify_findings(args.project_dir, findings)
    if args.json:
        print(json.dumps({
            "stats": result.stats,
            "verified": [f.to_dict() for f in result.verified],
            "discarded": [{"finding": d.finding.to_dict(), "reason": d.reason} for d in result.discarded],
        }, indent=2))
        return

    stats = result.stats
    print(f"{stats['verified']}/{stats['total']} verified, {stats['discarded']} discarded")
    for f in result.verified:
        print(f"  [OK]   [{f.severity.value}] {f.title}")
    for d in result.discarded:
        print(f"  [DROP] {d.finding.title}: {d.reason}")


def cmd_trend(args):
    state = load_convergence_state(args.project_dir)
    if state is None:
        print("No improvement cycles recorded.")
        return
    print(f"Max depth: {state.max_depth}  Threshold: {state.threshold}")
    print(format_trend(state))


def build_parser():
    parser = argparse.ArgumentParser(
        prog="buildgate",
        description="Phase tracking, review gates and convergence loops",
    )
    parser.add_argument("--project-dir", default=os.getcwd(),
                        help="Project directory (default: current directory)")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    init_parser = subparsers.add_parser("init", help="Save the developer profile")
    init_parser.add_argument("--name", required=True)
    init_parser.add_argument("--languages", nargs="*")
    init_parser.add_argument("--backend", help="Backend framework")
    init_parser.add_argument("--model", help="Claude model for the agents")
    init_parser.set_defaults(func=cmd_init)

    subparsers.add_parser("status", help="Show the current phase").set_defaults(func=cmd_status)
    subparsers.add_parser("resume", help="Show where an interrupted run stopped").set_defaults(func=cmd_resume)
    subparsers.add_parser("advance", help="Move to the next phase").set_defaults(func=cmd_advance)

    transition_parser = subparsers.add_parser("transition", help="Move to a specific phase")
    transition_parser.add_argument("phase", choices=[p.value for p in Phase], type=str.upper)
    transition_parser.set_defaults(func=cmd_transition)

    epic_parser = subparsers.add_parser("start-epic", help="Start a new epic from IDLE")
    epic_parser.add_argument("epic", type=int)
    epic_parser.set_defaults(func=cmd_start_epic)

    reset_parser = subparsers.add_parser("reset", help="Discard all pipeline progress")
    reset_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    reset_parser.set_defaults(func=cmd_reset)

    review_parser = subparsers.add_parser("review", help="Run the review panel and sign-off")
    review_parser.add_argument("--epic", type=int, help="Epic number (default: current)")
    review_parser.add_argument("--autonomous", action="store_true", help="Skip the sign-off prompt")
    review_parser.add_argument("--max-rejections", type=int, default=DEFAULTS["max_rejection_cycles"])
    review_parser.set_defaults(func=cmd_review)

    adv_parser = subparsers.add_parser("adversarial", help="Run the review/verify/fix loop")
    adv_parser.add_argument("--epic", type=int, help="Epic number (default: current)")
    adv_parser.add_argument("--max-iterations", type=int, default=DEFAULTS["max_iterations"])
    adv_parser.add_argument("--min-severity", choices=["critical", "high", "medium", "low", "info"],
                            help="Defer findings below this severity")
    adv_parser.add_argument("--approve", action="store_true",
                            help="Ask which findings to fix before every fix step")
    adv_parser.set_defaults(func=cmd_adversarial)

    improve_parser = subparsers.add_parser("improve", help="Run improvement cycles until convergence")
    improve_parser.add_argument("--max-depth", type=int, required=True)
    improve_parser.add_argument("--threshold", type=int, default=DEFAULTS["convergence_threshold"])
    improve_parser.add_argument("--interactive", action="store_true", help="Ask for sign-off each cycle")
    improve_parser.set_defaults(func=cmd_improve)

    verify_parser = subparsers.add_parser("verify", help="Check findings against the project files")
    verify_parser.add_argument("findings", help="JSON file: a list of findings or {\"findings\": [...]}")
    verify_parser.add_argument("--json", action="store_true", help="Machine-readable output")
    verify_parser.set_defaults(func=cmd_verify)

    subparsers.add_parser("trend", help="Show improvement cycle history").set_defaults(func=cmd_trend)
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    try:
        args.func(args)
    except BuildGateError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
