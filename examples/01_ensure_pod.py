"""Ensure a ready GPU pod and print how to reach it.

Configuration comes from podward.toml, ~/.podward/defaults.toml and RUNPOD_*
environment variables, e.g.:

    export RUNPOD_API_KEY=...
    export RUNPOD_IMAGE_NAME=runpod/pytorch:2.4.0-py3.11-cuda12.4.1-devel-ubuntu22.04
    export RUNPOD_POD_NAME=dev-pod
    python examples/01_ensure_pod.py

Press Ctrl+C while waiting to stop polling; the pod keeps running.
"""

import asyncio
import signal

import podward as pw


async def main() -> None:
    config = pw.load_config()
    abort = asyncio.Event()
    asyncio.get_running_loop().add_signal_handler(signal.SIGINT, abort.set)

    async with pw.PodOrchestrator.open(config) as orchestrator:
        gpus = await orchestrator.list_gpu_types()
        for gpu in gpus:
            if gpu.id in config.gpu_type_ids:
                print(f"{gpu.display_name}: {gpu.available_count} available")

        try:
            pod = await orchestrator.ensure_ready_pod(abort=abort)
        except pw.PollAborted:
            print("Stopped waiting; the pod was left as is.")
            return
        except pw.ReadyTimeoutError as e:
            print(f"Pod {e.pod_id} not ready after {e.elapsed:.0f}s, inspect it in the console.")
            return

    match pod.ssh_endpoint():
        case (host, port):
            print(f"ssh root@{host} -p {port}")
        case None:
            print("SSH port is not exposed")

    if url := pod.browser_url():
        print(f"Jupyter: {url}")


if __name__ == "__main__":
    ids = pw.setup_logging(pw.LogConfig(level="INFO"))
    try:
        asyncio.run(main())
    finally:
        pw.teardown_logging(ids)
