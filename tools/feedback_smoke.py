# tools/feedback_smoke.py
from __future__ import annotations
import json
import logging
import os

from openai import NotFoundError

from ecg_core.azure_cfg import client, settings
from ecg_core.feedback import generate_feedback
from ecg_core.scoring import score_report
from ecg_core.types import OfficialReport, UserReport

SAMPLE_OFFICIAL = {
    "case_id": "smoke",
    "rhythm": ["afib"],
    "heart_rate": 128,
    "axis": "normal",
    "pr_interval": "na",
    "qrs_duration": "normal",
    "qt_interval": "normal",
    "findings": ["lvh"],
    "categories": ["arrhythmia"],
}
SAMPLE_USER = {**SAMPLE_OFFICIAL, "rhythm": ["sinus"], "heart_rate": 96, "findings": []}


def main():
    s = settings()
    print("Endpoint :", s.endpoint)
    print("Deploy   :", s.deployment, "(deployment name passed as model=)")
    print("API ver  :", s.api_version)
    try:
        r = client().chat.completions.create(
            model=s.deployment,
            messages=[{"role": "user", "content": "Say 'pong' only."}],
            temperature=0.0,
            max_tokens=5,
        )
        print("Reply    :", r.choices[0].message.content)
    except NotFoundError:
        print("ERROR 404: Azure cannot find this deployment for this API version.")
        print("-> Verify the deployment name exactly as in the portal.")
        raise

    os.environ["LLM_BACKEND"] = "azure"
    result = score_report(UserReport.from_dict(SAMPLE_USER), OfficialReport.from_dict(SAMPLE_OFFICIAL))
    print("Score    :", result.score)
    print(json.dumps(generate_feedback(result), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    main()
