#!/usr/bin/env python3

import functools
import json
import logging
import os
import sys
import threading
import traceback
from typing import Optional

import click

from rws_lambda.command import LambdaCommand, parse_target
from rws_lambda.context import DeploymentContext
from rws_lambda.exceptions import LambdaCLIError
from rws_lambda.utils import catch_interrupt, configure_logging, global_logging, update_nested_dict
from rws_lambda.version import __version__


class ExceptionProcesser(click.Group):
    def __call__(self, *args, **kwargs):
        try:
            return self.main(*args, **kwargs)
        except LambdaCLIError as e:
            logging.error(e)
            sys.exit(e.exit_code)
        except Exception as e:
            logging.error(e)
            traceback.print_exc()
            logging.info("# Lambda command failed! See the output file for details")
            sys.exit(1)


def load_config(config: Optional[str]) -> dict:
    if config is None:
        return {}
    with open(config, "r") as config_file:
        return json.load(config_file)


def common_params(func):
    @click.option(
        "--config",
        default=None,
        type=click.Path(exists=True, dir_okay=False, readable=True),
        help="Location of the JSON config with the aws section.",
    )
    @click.option("--region", default=None, type=str, help="Override the AWS region.")
    @click.option(
        "--lambda-bucket", default=None, type=str, help="Override the deployment S3 bucket."
    )
    @click.option(
        "--functions-dir",
        default=os.path.join(os.path.curdir, "lambda-functions"),
        help="Directory with one subdirectory per function.",
    )
    @click.option(
        "--payloads-dir",
        default=os.path.join(os.path.curdir, "payloads"),
        help="Directory with JSON invocation payloads.",
    )
    @click.option(
        "--cache",
        default=os.path.join(os.path.curdir, "cache"),
        help="Location of the packaged archives.",
    )
    @click.option(
        "--project-dir",
        default=os.path.curdir,
        help="Project root, where files required by lifecycle hooks are found.",
    )
    @click.option("--output-file", default=None, help="Output filename for logging.")
    @click.option(
        "--output-json", default=None, help="Write the command result to this JSON file."
    )
    @click.option("--verbose/--no-verbose", default=False, help="Verbose output.")
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


@click.group(cls=ExceptionProcesser)
@click.version_option(__version__, prog_name="rws-lambda")
def cli():
    pass


@cli.command("lambda")
@click.argument("lambda_string", type=str)
@click.option("--subnet-id", default=None, type=str, help="Subnet of deployed functions.")
@click.option("--vpc-id", default=None, type=str, help="VPC of the subnet.")
@click.option(
    "--redeploy-loader/--no-redeploy-loader",
    default=False,
    help="Rebuild and redeploy the EFS loader function first.",
)
@click.option(
    "--efs/--no-efs", "use_efs", default=True, help="Mount the shared EFS volume in the function."
)
@click.option(
    "--tail-logs/--no-tail-logs", default=True, help="Print CloudWatch logs after an invocation."
)
@common_params
@click.pass_context
def lambda_command(
    ctx,
    lambda_string,
    subnet_id,
    vpc_id,
    redeploy_loader,
    use_efs,
    tail_logs,
    config,
    region,
    lambda_bucket,
    functions_dir,
    payloads_dir,
    cache,
    project_dir,
    output_file,
    output_json,
    verbose,
):
    """
    Run LAMBDA_STRING, one of deploy:<name>[:<payload>], undeploy:<name>,
    invoke:<name>[:<payload>], delete:<name>, list and open-to-web:<name>.
    """
    try:
        target = parse_target(lambda_string)
    except LambdaCLIError as e:
        raise click.BadParameter(str(e), param_hint="LAMBDA_STRING")

    user_config = load_config(config)
    if "aws" not in user_config:
        user_config = {"aws": user_config}
    # CLI overrides JSON options
    update_nested_dict(user_config, ["aws", "region"], region)
    update_nested_dict(user_config, ["aws", "lambda_bucket"], lambda_bucket)

    cancel_event = threading.Event()
    catch_interrupt(cancel_event)

    try:
        context = DeploymentContext.create(
            user_config,
            functions_dir,
            payloads_dir,
            cache,
            project_dir=project_dir,
            verbose=verbose,
            logging_filename=os.path.abspath(output_file) if output_file else None,
            cancel_event=cancel_event,
        )
    except LambdaCLIError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(e.exit_code)

    result = LambdaCommand(context).execute(
        target,
        subnet_id=subnet_id,
        vpc_id=vpc_id,
        redeploy_loader=redeploy_loader,
        use_efs=use_efs,
        tail_logs=tail_logs,
    )
    if output_json:
        with open(output_json, "w") as out_f:
            json.dump(result.serialize(), out_f, indent=2, default=str)
    ctx.exit(result.exit_code)


def main():
    global_logging()
    configure_logging()
    cli()


if __name__ == "__main__":
    main()
