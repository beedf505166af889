import os
import sys
import signal
import logging
import argparse
import threading

try:
    from rich.console import Console
    from rich.table import Table
    from rich.panel import Panel
    from rich.logging import RichHandler
    from rich.progress import Progress, SpinnerColumn, BarColumn, TextColumn, TimeElapsedColumn
    from rich import box
except ImportError:
    print("Error: The 'rich' library is required for the CLI but not installed.", file=sys.stderr)
    print("Please install it with: pip install soundslice[cli]", file=sys.stderr)
    sys.exit(1)

from soundslicelib import __version__
from soundslicelib.audio import open_sound, format_duration, SUPPORTED_EXTENSIONS
from soundslicelib.config import ConfigError, default_config, load_preset, merge_configs, resolve_config
from soundslicelib.errors import SoundFileError
from soundslicelib.events import EventBus, PROGRESS
from soundslicelib.parsers import parser_for_path
from soundslicelib.pyramid import build_pyramid
from soundslicelib.reports import build_summary, render_summary_text, save_json
from soundslicelib.writer import write_subset

console = Console()
log = logging.getLogger("soundslice")

_BAR_CHARS = " ▁▂▃▄▅▆▇█"


def non_negative_float(value):
    fvalue = float(value)
    if fvalue < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return fvalue


def non_negative_int(value):
    ivalue = int(value)
    if ivalue < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return ivalue


def positive_int(value):
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return ivalue


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="soundslice",
        description="Inspect, visualise and trim WAV, AMR and AAC files without re-encoding",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--version", action="version",
                        version=f"soundslice {__version__}")
    parser.add_argument("--preset", type=str, default=None,
                        help="JSON preset with configuration overrides")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Enable debug logging (also: SOUNDSLICE_DEBUG=1)")

    sub = parser.add_subparsers(dest="command", required=True)

    p_info = sub.add_parser("info", help="Show stream and frame table summary",
                            formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    p_info.add_argument("file", type=str,
                        help=f"Sound file ({', '.join(SUPPORTED_EXTENSIONS)})")
    p_info.add_argument("--json", type=str, default=None,
                        help="Also write the summary to this JSON file")

    p_wave = sub.add_parser("waveform", help="Render the gain waveform in the terminal",
                            formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    p_wave.add_argument("file", type=str)
    p_wave.add_argument("--level", type=int, choices=range(5), default=None,
                        help="Zoom level (0 = finest); defaults to the initial level")
    p_wave.add_argument("--width", type=positive_int, default=None,
                        help="Columns to draw (default: terminal width)")
    p_wave.add_argument("--height", type=positive_int, default=8,
                        help="Rows to draw")

    p_trim = sub.add_parser("trim", help="Write a frame range to a new file",
                            formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    p_trim.add_argument("file", type=str)
    p_trim.add_argument("-o", "--output", type=str, required=True,
                        help="Destination file (same format family as the source)")
    p_trim.add_argument("--start", type=non_negative_float, default=None,
                        help="Start time in seconds")
    p_trim.add_argument("--end", type=non_negative_float, default=None,
                        help="End time in seconds (default: end of file)")
    p_trim.add_argument("--start-frame", type=non_negative_int, default=None)
    p_trim.add_argument("--end-frame", type=non_negative_int, default=None)

    args = parser.parse_args(argv)

    if args.command == "trim":
        uses_seconds = args.start is not None or args.end is not None
        uses_frames = args.start_frame is not None or args.end_frame is not None
        if uses_seconds and uses_frames:
            parser.error("use either --start/--end or --start-frame/--end-frame, not both")

    return args


def setup_logging(verbose):
    debug = verbose or os.environ.get("SOUNDSLICE_DEBUG", "").lower() in ("1", "true", "yes")
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=debug)],
    )


def build_config(args):
    config = default_config()
    if args.preset:
        config = merge_configs(config, load_preset(args.preset))
    return resolve_config(config)


# ---------------------------------------------------------------------------
# Parsing with progress / Ctrl-C cancellation
# ---------------------------------------------------------------------------

def load_with_progress(filepath, config):
    event_bus = EventBus()
    cancelled = threading.Event()

    def on_sigint(signum, frame):
        cancelled.set()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task(f"[cyan]Parsing {os.path.basename(filepath)}...", total=1.0)

        def on_progress(**data):
            progress.update(task_id, completed=data["fraction"])
            return not cancelled.is_set()
        event_bus.subscribe(PROGRESS, on_progress)

        previous = signal.signal(signal.SIGINT, on_sigint)
        try:
            handle = open_sound(filepath, config=config, event_bus=event_bus)
        finally:
            signal.signal(signal.SIGINT, previous)
            event_bus.unsubscribe(PROGRESS, on_progress)

    if not handle.complete:
        console.print("[yellow]Parsing cancelled; showing the frames read so far.[/]")
    return handle


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_info(args, config):
    handle = load_with_progress(args.file, config)
    summary = build_summary(handle)

    table = Table(box=box.ROUNDED, title=os.path.basename(handle.filepath), show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Format", f"{summary['file_type']} ({summary['codec']})")
    table.add_row("Sample rate", f"{summary['sample_rate']} Hz")
    table.add_row("Channels", str(summary["channels"]))
    table.add_row("Frames", f"{summary['frames']} x {summary['samples_per_frame']} samples")
    table.add_row("Duration", summary["duration"])
    table.add_row("Avg bitrate", f"{summary['avg_bitrate_kbps']} kbps")
    table.add_row("File size", f"{summary['file_size']} bytes")
    table.add_row("Audio bytes", str(summary["audio_bytes"]))
    if summary["gain_min"] is not None:
        table.add_row("Gain", f"{summary['gain_min']} .. {summary['gain_max']} "
                              f"(mean {summary['gain_mean']})")
    console.print(table)

    if args.json:
        save_json(summary, args.json)
        console.print(f"[dim]Summary saved to: {args.json}[/]")
    log.debug("%s", render_summary_text(summary))
    return 0


def _columns(heights, width):
    """Reduce *heights* to at most *width* columns, keeping the peak of each bucket."""
    n = len(heights)
    if n <= width:
        return list(heights)
    cols = []
    for c in range(width):
        lo = c * n // width
        hi = max((c + 1) * n // width, lo + 1)
        cols.append(max(heights[lo:hi]))
    return cols


def cmd_waveform(args, config):
    handle = load_with_progress(args.file, config)
    pyramid = build_pyramid(handle, config)
    level = pyramid.initial_level if args.level is None else args.level
    width = args.width or max(console.width - 2, 10)
    rows = args.height

    heights = pyramid.levels[level].heights.tolist()
    cols = _columns(heights, width)
    steps = len(_BAR_CHARS) - 1
    lines = []
    for row in range(rows, 0, -1):
        line = []
        for h in cols:
            fill = h * rows - (row - 1)
            idx = int(round(min(max(fill, 0.0), 1.0) * steps))
            line.append(_BAR_CHARS[idx])
        lines.append("".join(line))

    shown = format_duration(int(pyramid.pixels_to_seconds(len(heights), level) * handle.sample_rate),
                            handle.sample_rate)
    console.print(Panel(
        "\n".join(lines),
        title=f"{os.path.basename(handle.filepath)}  level {level} ({pyramid.zoom_factor(level):g} px/frame)",
        subtitle=f"{len(heights)} px = {shown}",
        border_style="cyan",
    ))
    return 0


def cmd_trim(args, config):
    handle = load_with_progress(args.file, config)
    if not handle.complete:
        console.print("[bold red]Error:[/] cannot trim from an incomplete parse.")
        return 1

    try:
        dest_parser = parser_for_path(args.output)
    except SoundFileError:
        dest_parser = None
    if dest_parser is None or dest_parser.file_type is not handle.file_type:
        console.print(f"[bold red]Error:[/] output '{args.output}' must use a "
                      f"{handle.file_type.value} extension.")
        return 1

    if args.start_frame is not None or args.end_frame is not None:
        start = args.start_frame or 0
        end = handle.frame_count if args.end_frame is None else args.end_frame
    else:
        start = handle.seconds_to_frames(args.start or 0.0)
        end = handle.frame_count if args.end is None else handle.seconds_to_frames(args.end)

    try:
        written = write_subset(handle, args.file, start, end, args.output)
    except ValueError as e:
        console.print(f"[bold red]Error:[/] {e}")
        return 1

    seconds = (end - start) * handle.samples_per_frame / handle.sample_rate
    console.print(f"[green]Wrote[/] frames {start}..{end} "
                  f"({seconds:.3f} s, {written} bytes) to {args.output}")
    return 0


_COMMANDS = {
    "info": cmd_info,
    "waveform": cmd_waveform,
    "trim": cmd_trim,
}


def main(argv=None):
    args = parse_arguments(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
    except ConfigError as e:
        console.print(f"[bold red]Config error:[/] {e}")
        return 2

    try:
        return _COMMANDS[args.command](args, config)
    except FileNotFoundError as e:
        console.print(f"[bold red]Error:[/] File '{e.filename}' not found.")
    except SoundFileError as e:
        console.print(f"[bold red]Error:[/] {e}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
