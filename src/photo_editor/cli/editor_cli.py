#!/usr/bin/env python3
"""
Command-line interface for the photo editing pipeline.

`run` executes a single operation on an image file and prints the result as
JSON. `serve` answers method-channel calls read as JSON lines from stdin,
one response line per request, so a host application can drive the
pipeline over a pipe.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional, Dict, TextIO

import torch

from ..inference.dispatcher import OperationDispatcher
from ..core.config import PipelineConfig
from ..core.data_models import Operation
from ..core.error_handling import ConfigurationError, setup_global_error_handling

CHANNEL_NAME = "com.nanopic.editor/ml_operations"


class EditorCLI:
    """Command-line interface for the operation dispatcher."""

    def __init__(self):
        """Initialize editor CLI."""
        self.parser = self._create_parser()
        self.logger = logging.getLogger(__name__)

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create argument parser for editor CLI."""
        parser = argparse.ArgumentParser(
            prog="photo-editor",
            description="Run AI photo editing operations on local images",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Grayscale filter
  photo-editor run applyFilter --image photo.jpg --param filterType=grayscale

  # Background removal with a hard mask
  photo-editor --asset-dir assets/models run removeBackground --image photo.png \\
    --param threshold=0.5

  # Object removal with the inpainting model loaded first
  photo-editor run removeObject --image photo.png --init-models \\
    --param left=10 --param top=10 --param right=60 --param bottom=60

  # Serve method-channel calls over stdin/stdout
  echo '{"method": "initializeModels"}' | photo-editor serve
            """
        )

        # Configuration
        config_group = parser.add_argument_group('configuration')
        config_group.add_argument(
            '--config-file', type=str,
            help='Load pipeline configuration from JSON file'
        )
        config_group.add_argument(
            '--save-config', type=str,
            help='Save effective configuration to JSON file'
        )
        config_group.add_argument(
            '--asset-dir', type=str,
            help='Directory containing model assets'
        )
        config_group.add_argument(
            '--output-dir', type=str,
            help='Directory results are written to'
        )
        config_group.add_argument(
            '--device', type=str, choices=['auto', 'cpu', 'cuda', 'mps'],
            help='Device to use for inference'
        )
        config_group.add_argument(
            '--seed', type=int,
            help='Seed for fallback marker and region placement'
        )

        # Logging
        logging_group = parser.add_argument_group('logging')
        logging_group.add_argument(
            '--log-level', type=str, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default='INFO',
            help='Logging level (default: INFO)'
        )
        logging_group.add_argument(
            '--quiet', action='store_true',
            help='Suppress all output except errors'
        )
        logging_group.add_argument(
            '--error-log', type=str,
            help='Also write errors to this log file'
        )

        subparsers = parser.add_subparsers(dest='command')
        subparsers.required = True

        run = subparsers.add_parser('run', help='Execute one operation')
        run.add_argument(
            'operation', type=str,
            help=f"Operation name ({', '.join(op.value for op in Operation)})"
        )
        run.add_argument(
            '--image', type=str,
            help='Source image path'
        )
        run.add_argument(
            '--param', type=str, action='append', default=[], metavar='KEY=VALUE',
            help='Operation parameter (repeatable)'
        )
        run.add_argument(
            '--init-models', action='store_true',
            help='Load all models before running the operation'
        )

        subparsers.add_parser('serve', help='Answer JSON-line requests on stdin')

        return parser

    def _setup_logging(self, log_level: str, quiet: bool = False, error_log: Optional[str] = None) -> None:
        """Setup logging configuration."""
        if quiet:
            log_level = 'ERROR'

        setup_global_error_handling(error_log)

        # stdout is reserved for results
        logging.basicConfig(
            level=getattr(logging, log_level),
            format='%(asctime)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stderr)]
        )

        self.logger.info(f"Logging configured: level={log_level}")

    def _create_config(self, args: argparse.Namespace) -> PipelineConfig:
        """Create pipeline configuration; command line flags override the file."""
        if args.config_file:
            config = PipelineConfig.load(args.config_file)
        else:
            config = PipelineConfig()

        if args.asset_dir is not None:
            config.asset_dir = args.asset_dir
        if args.output_dir is not None:
            config.output_dir = args.output_dir
        if args.device is not None:
            config.device = args.device
        if args.seed is not None:
            config.random_seed = args.seed

        return config

    @staticmethod
    def _parse_params(pairs: List[str]) -> Dict[str, str]:
        params = {}
        for pair in pairs:
            key, sep, value = pair.partition('=')
            if not sep or not key:
                raise ValueError(f"Parameter must be KEY=VALUE, got {pair!r}")
            params[key] = value
        return params

    def _run_operation(self, dispatcher: OperationDispatcher, args: argparse.Namespace, out: TextIO) -> int:
        params = self._parse_params(args.param)

        if args.init_models and args.operation != Operation.INITIALIZE_MODELS.value:
            init = dispatcher.execute(Operation.INITIALIZE_MODELS.value)
            for warning in init.warnings:
                self.logger.warning(warning)

        result = dispatcher.execute(args.operation, args.image, **params)
        out.write(json.dumps(result.to_response(), default=str) + "\n")

        if result.success:
            self.logger.info(f"{result.operation} -> {result.output_path}")
            return 0
        self.logger.error(f"{result.operation} failed [{result.error_code}]: {result.error_message}")
        return 1

    def _serve(self, dispatcher: OperationDispatcher, stream_in: TextIO, out: TextIO) -> int:
        """Answer one JSON request per input line until EOF."""
        self.logger.info(f"Serving {CHANNEL_NAME} on stdin/stdout")
        for line in stream_in:
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError as e:
                reply = {'success': False, 'code': 'INVALID_ARGUMENT', 'message': f"Malformed request: {e}"}
            else:
                if not isinstance(message, dict) or not isinstance(message.get('method'), str):
                    reply = {'success': False, 'code': 'INVALID_ARGUMENT', 'message': "Request needs a 'method'"}
                else:
                    reply = dispatcher.handle_call(message['method'], message.get('arguments')).to_dict()
                if isinstance(message, dict) and 'id' in message:
                    reply['id'] = message['id']
            out.write(json.dumps(reply, default=str) + "\n")
            out.flush()
        return 0

    def run(
        self,
        args: Optional[List[str]] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None
    ) -> int:
        """Run editor CLI."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        try:
            parsed_args = self.parser.parse_args(args)

            self._setup_logging(parsed_args.log_level, parsed_args.quiet, parsed_args.error_log)
            if not parsed_args.quiet:
                self.logger.info(f"PyTorch version: {torch.__version__}")

            config = self._create_config(parsed_args)
            if parsed_args.save_config:
                config.save(parsed_args.save_config)

            with OperationDispatcher(config) as dispatcher:
                if parsed_args.command == 'serve':
                    return self._serve(dispatcher, stdin, stdout)
                return self._run_operation(dispatcher, parsed_args, stdout)

        except ConfigurationError as e:
            self.logger.error(f"Invalid configuration: {e}")
            return 1
        except ValueError as e:
            self.logger.error(str(e))
            return 1
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
            return 1


def main():
    """Main entry point for editor CLI."""
    cli = EditorCLI()
    return cli.run()


if __name__ == '__main__':
    sys.exit(main())
