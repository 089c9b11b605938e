"""
Allow running the package directly: python -m mandelbrot_explorer
"""
import logging
from argparse import ArgumentParser

from .colormaps import list_colormap_names


def build_parser():
    parser = ArgumentParser(prog="mandelbrot_explorer")

    parser.add_argument('--width', type=int,
                        dest='width', help='window width in pixels',
                        metavar='WIDTH', default=None)

    parser.add_argument('--height', type=int,
                        dest='height', help='window height in pixels',
                        metavar='HEIGHT', default=None)

    parser.add_argument('--max-iterations', type=int,
                        dest='max_iterations', help='iteration budget per pixel',
                        metavar='MAX_ITERATIONS', default=None)

    parser.add_argument('--palette', type=str, choices=list_colormap_names(),
                        dest='palette', help='display palette applied to the grayscale render',
                        default=None)

    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging of render sessions and passes.')

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.max_iterations is not None and args.max_iterations < 1:
        build_parser().error('--max-iterations must be at least 1')

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(threadName)s %(name)s %(levelname)s: %(message)s",
    )

    from .app import run
    run(args.width, args.height, args.max_iterations, args.palette)


if __name__ == "__main__":
    main()
