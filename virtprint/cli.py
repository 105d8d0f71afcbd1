import argparse
import datetime as _dt
from typing import List, Optional

from dotenv import load_dotenv

from . import __version__
from .config import load_config
from .errors import JobNotFound, JobStateError
from .identity import IdentityDirectory
from .jobstore import JobStore
from .models import PrintJob, utcnow
from .server import configure_logging, run


def _fmt_time(value: Optional[_dt.datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "-"


def _job_line(job: PrintJob) -> str:
    owner = job.account_id or "(orphaned)"
    name = job.document_name or "-"
    return (
        f"{job.id}  #{job.number:<5} {job.status.value:<10} {job.origin.value:<4} "
        f"{owner:<16} {job.source_ip:<15} {job.size:>10}  {_fmt_time(job.created_at)}  {name}"
    )


def _cmd_serve(args, config) -> int:
    run(config)
    return 0


def _cmd_token_create(args, config) -> int:
    directory = IdentityDirectory.load(config["IDENTITY_FILE"])
    expires_at = None
    if args.expires_days:
        expires_at = utcnow() + _dt.timedelta(days=args.expires_days)
    token, secret = directory.add_token(args.account, args.name, expires_at=expires_at)
    print(f"Token {token.id} created for {token.account_id} (expires {_fmt_time(token.expires_at)})")
    print(f"Secret: {secret}")
    print("The secret is shown only once. Use it as the IPP password with the account id as user name.")
    return 0


def _cmd_token_revoke(args, config) -> int:
    directory = IdentityDirectory.load(config["IDENTITY_FILE"])
    try:
        token = directory.revoke_token(args.token_id)
    except KeyError:
        raise SystemExit(f"No token with id {args.token_id}")
    print(f"Token {token.id} ({token.name}) revoked")
    return 0


def _cmd_token_list(args, config) -> int:
    directory = IdentityDirectory.load(config["IDENTITY_FILE"])
    now = utcnow()
    for token in directory.list_tokens(args.account):
        state = "valid" if token.is_valid(now) else ("revoked" if token.revoked else "expired")
        print(f"{token.id}  {state:<8} {_fmt_time(token.created_at)}  expires {_fmt_time(token.expires_at)}  {token.name}")
    return 0


def _cmd_ip_add(args, config) -> int:
    directory = IdentityDirectory.load(config["IDENTITY_FILE"])
    try:
        reg = directory.add_registration(args.account, args.network, description=args.description)
    except ValueError as exc:
        raise SystemExit(f"Invalid address or network {args.network!r}: {exc}")
    print(f"Registration {reg.id}: {reg.network} -> {reg.account_id}")
    return 0


def _cmd_ip_remove(args, config) -> int:
    directory = IdentityDirectory.load(config["IDENTITY_FILE"])
    try:
        reg = directory.remove_registration(args.registration_id)
    except KeyError:
        raise SystemExit(f"No registration with id {args.registration_id}")
    print(f"Registration {reg.id} ({reg.network}) removed")
    return 0


def _cmd_ip_list(args, config) -> int:
    directory = IdentityDirectory.load(config["IDENTITY_FILE"])
    now = utcnow()
    for reg in directory.list_registrations(args.account):
        state = "active" if reg.is_valid(now) else "inactive"
        print(f"{reg.id}  {str(reg.network):<20} {reg.account_id:<16} {state:<8} {reg.description}")
    return 0


def _cmd_jobs_list(args, config) -> int:
    store = JobStore(config["DATA_DIR"], max_attempts=config["MAX_ATTEMPTS"], recover=False)
    for job in store.list_jobs(account_id=args.account, orphaned=args.orphaned, limit=args.limit):
        print(_job_line(job))
        if job.error:
            print(f"    {job.error_code}: {job.error}")
    return 0


def _cmd_jobs_cancel(args, config) -> int:
    store = JobStore(config["DATA_DIR"], max_attempts=config["MAX_ATTEMPTS"], recover=False)
    try:
        job = store.find(args.job_id)
        job = store.cancel(job.id)
    except JobNotFound:
        raise SystemExit(f"No job with id {args.job_id}")
    except JobStateError as exc:
        raise SystemExit(str(exc))
    print(f"Job {job.id}: {job.status.value}" + (" (cancel requested)" if job.cancel_requested else ""))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="virtprint", description="Virtual network printer (raw 9100 + IPP)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="run the raw and IPP listeners and the conversion workers")
    serve.set_defaults(func=_cmd_serve)

    token = sub.add_parser("token", help="manage IPP tokens").add_subparsers(dest="action", required=True)
    p = token.add_parser("create", help="create a token and print its secret once")
    p.add_argument("account")
    p.add_argument("--name", required=True)
    p.add_argument("--expires-days", type=int, default=0)
    p.set_defaults(func=_cmd_token_create)
    p = token.add_parser("revoke")
    p.add_argument("token_id")
    p.set_defaults(func=_cmd_token_revoke)
    p = token.add_parser("list")
    p.add_argument("account", nargs="?")
    p.set_defaults(func=_cmd_token_list)

    ip = sub.add_parser("ip", help="manage address registrations").add_subparsers(dest="action", required=True)
    p = ip.add_parser("add")
    p.add_argument("account")
    p.add_argument("network", help="address or CIDR range")
    p.add_argument("--description", default="")
    p.set_defaults(func=_cmd_ip_add)
    p = ip.add_parser("remove")
    p.add_argument("registration_id")
    p.set_defaults(func=_cmd_ip_remove)
    p = ip.add_parser("list")
    p.add_argument("--account")
    p.set_defaults(func=_cmd_ip_list)

    jobs = sub.add_parser("jobs", help="inspect and cancel jobs").add_subparsers(dest="action", required=True)
    p = jobs.add_parser("list")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--account")
    group.add_argument("--orphaned", action="store_true")
    p.add_argument("--limit", type=int)
    p.set_defaults(func=_cmd_jobs_list)
    p = jobs.add_parser("cancel")
    p.add_argument("job_id", help="job id or job number")
    p.set_defaults(func=_cmd_jobs_cancel)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()
    config = load_config()
    configure_logging(config["LOG_LEVEL"] if args.command in (None, "serve") else "WARNING")

    func = getattr(args, "func", _cmd_serve)
    return func(args, config)


if __name__ == "__main__":
    raise SystemExit(main())
