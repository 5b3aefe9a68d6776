"""
create-ebs-volume: provision an EBS volume and attach it to this instance.

Usage:
    # 100 GiB encrypted gp3 volume, limits from /etc/ebs-autoscale.json
    create-ebs-volume --size 100

    # Provisioned IOPS, unencrypted, tighter created-volume limit
    create-ebs-volume -s 500 -t io2 --iops 4000 --not-encrypted --max-created-volumes 4

On success the device path (e.g. /dev/xvdba) is the only thing written to
stdout and the exit code is 0. Any failure exits 1 with a one-line message on
stderr; details go to the log.
"""

import argparse
import logging
import signal
import sys
import threading
from typing import Callable

from botocore.exceptions import BotoCoreError

from . import __version__
from .config import Config, Settings
from .devices import device_lock, is_block_device, next_device
from .errors import ConfigurationError, EBSAutoscaleError, PolicyError, UsageError, WaitCancelled, WaitTimeout
from .metadata import InstanceMetadata
from .models import InstanceContext, VolumeHandle, VolumeState
from .providers import get_storage_provider
from .providers.base import ProviderError, StorageProvider
from .provisioner import attach_volume, create_volume, enable_delete_on_termination
from .quota import evaluate

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _set_termination_policy(provider: StorageProvider, ctx: InstanceContext, handle: VolumeHandle) -> VolumeHandle:
    """Failure only degrades cleanup-on-termination, so it is logged, not raised."""
    try:
        return enable_delete_on_termination(provider, ctx, handle)
    except PolicyError as e:
        logger.warning(
            f"{e}. Volume {handle.volume_id} stays attached at {handle.device} "
            f"but will not be deleted with the instance",
            extra={"event": "delete_on_termination_failed", "volume_id": handle.volume_id},
        )
        return handle


def provision(
    provider: StorageProvider,
    ctx: InstanceContext,
    settings: Settings,
    is_present: Callable[[str], bool] | None = None,
    cancel: threading.Event | None = None,
) -> str:
    """
    Check quotas, create a volume, attach it and mark it delete-on-termination.

    Device allocation through device appearance runs under the instance-wide
    device lock, so concurrent runs on one instance cannot pick the same name.

    Returns:
        Device path of the attached volume

    Raises:
        LimitExceeded, DeviceNamespaceExhausted: Nothing was created
        ProvisioningError: Create failed, nothing left behind
        AttachmentError: Attach failed, the new volume was deleted (best effort)
        WaitTimeout, WaitCancelled: A wait was cut short; details["attached"] tells
            whether the volume was kept (a detached volume is deleted)
        ProviderError: Quota usage could not be read
    """
    is_present = is_present or is_block_device
    request = settings.request
    logger.info(
        f"Provisioning {request.size_gb} GiB {request.volume_type} volume for "
        f"{ctx.instance_id} in {ctx.availability_zone}"
    )

    evaluate(provider, ctx, settings.limits)

    with device_lock(settings.device_lock_file):
        device = next_device(is_present)
        handle = create_volume(
            provider, ctx, request,
            interval=settings.volume_poll_interval,
            timeout=settings.volume_available_timeout,
            cancel=cancel,
        )
        handle = handle.advance(handle.state, device=device)

        try:
            handle = attach_volume(
                provider, ctx, handle, device,
                is_present=is_present,
                interval=settings.device_poll_interval,
                timeout=settings.device_visible_timeout,
                cancel=cancel,
            )
        except (WaitTimeout, WaitCancelled) as e:
            if not e.details.get("attached", True):
                logger.error(f"Volume {handle.volume_id} lost its attachment while waiting for the device: {e}")
                raise
            # Still attached on the provider side; keep it and protect it from leaking
            attached = handle.advance(VolumeState.ATTACHED, device=e.details.get("device", device))
            logger.error(
                f"Volume {attached.volume_id} attached at {attached.device} but the device "
                f"did not appear: {e}"
            )
            _set_termination_policy(provider, ctx, attached)
            raise

    logger.info(f"Volume {handle.volume_id} attached at {handle.device}")
    handle = _set_termination_policy(provider, ctx, handle)
    logger.info(f"Volume {handle.volume_id} ready at {handle.device} ({handle.state.value})")
    return handle.device


class ArgumentParser(argparse.ArgumentParser):
    """argparse exits 2 on bad usage; this command exits 1."""

    def error(self, message):
        raise UsageError(message, usage=self.format_usage())


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="create-ebs-volume",
        description="Create an EBS volume and attach it to this instance. Prints the device path.",
    )
    parser.add_argument("-s", "--size", type=int, required=True, metavar="GB",
                        help="Size of the volume in GiB (required)")
    parser.add_argument("-t", "--type", dest="volume_type", metavar="TYPE",
                        help="EBS volume type: standard, gp2, gp3, io1, io2, st1, sc1 (default from config: gp3)")
    parser.add_argument("-i", "--iops", type=int, metavar="N",
                        help="Provisioned IOPS; required for io1/io2, optional for gp3")
    parser.add_argument("--throughput", type=int, metavar="MBPS",
                        help="Provisioned throughput in MiB/s (gp3 only)")
    parser.add_argument("-n", "--not-encrypted", action="store_true",
                        help="Create an unencrypted volume (volumes are encrypted by default)")
    parser.add_argument("--max-total-created-size", type=int, metavar="GB",
                        help="Maximum total GiB of volumes this instance may create")
    parser.add_argument("--max-attached-volumes", type=int, metavar="N",
                        help="Maximum number of volumes attached to this instance")
    parser.add_argument("--max-created-volumes", type=int, metavar="N",
                        help="Maximum number of volumes this instance may create")
    parser.add_argument("-c", "--config", metavar="PATH",
                        help=f"Config file (default: $EBS_AUTOSCALE_CONFIG or {Config.CONFIG_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: bool = False, log_file: str | None = None) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    if not verbose:
        for noisy in ("botocore", "boto3", "urllib3"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    if log_file:
        try:
            handler = logging.FileHandler(log_file)
        except OSError as e:
            logger.warning(f"Cannot write log file {log_file}: {e}")
            return
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def _install_signal_handlers(cancel: threading.Event) -> dict:
    """Route SIGTERM/SIGINT to cancel; returns the previous handlers."""
    def _handler(signum, frame):
        logger.warning(f"Received signal {signum}, cancelling")
        cancel.set()

    previous = {}
    for signum in (signal.SIGTERM, signal.SIGINT):
        previous[signum] = signal.signal(signum, _handler)
    return previous


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except UsageError as e:
        sys.stderr.write(e.usage)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(args.verbose)

    try:
        config = Config(args.config)
        settings = config.settings(
            size_gb=args.size,
            volume_type=args.volume_type,
            iops=args.iops,
            throughput=args.throughput,
            encrypted=False if args.not_encrypted else None,
            max_total_created_size=args.max_total_created_size,
            max_attached_volumes=args.max_attached_volumes,
            max_created_volumes=args.max_created_volumes,
            verbose=args.verbose,
        )
    except UsageError as e:
        sys.stderr.write(parser.format_usage())
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except EBSAutoscaleError as e:
        logger.error(f"Configuration error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1

    configure_logging(settings.verbose, settings.log_file)

    cancel = threading.Event()
    previous_handlers = {}
    if threading.current_thread() is threading.main_thread():
        previous_handlers = _install_signal_handlers(cancel)

    try:
        ctx = InstanceMetadata().instance_context()
        try:
            provider = get_storage_provider(region=ctx.region)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        device = provision(provider, ctx, settings, cancel=cancel)
    except EBSAutoscaleError as e:
        logger.error(f"{type(e).__name__}: {e}", extra={"event": "provisioning_failed", "details": e.details})
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ProviderError as e:
        logger.error(f"{type(e).__name__}: {e}", extra={"event": "provisioning_failed", "details": e.details})
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except BotoCoreError as e:
        logger.error(f"AWS client error: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    print(device)
    return 0


if __name__ == "__main__":
    sys.exit(main())
