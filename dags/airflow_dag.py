"""
Airflow DAG: Airbnb reviews warehouse (source -> dim -> fct_reviews -> mart -> checks).
Single task runs the CLI. Schedule: daily.

Trigger with {"start_date": "YYYY-MM-DD", "end_date": "YYYY-MM-DD"} to reload a window;
without them the loader picks up reviews newer than what fct_reviews already holds.
"""
from datetime import datetime

from airflow import DAG
from airflow.models.param import Param
from airflow.operators.bash import BashOperator

# In docker-compose we mount project under /opt/airflow (dags, src, data, ...)
PROJECT_ROOT = "/opt/airflow"

# Pipeline deps are installed as airflow user into ~/.local; task subprocess needs this on PYTHONPATH
AIRFLOW_SITE_PACKAGES = "/home/airflow/.local/lib/python3.11/site-packages"

with DAG(
    dag_id="airbnb_reviews_warehouse",
    default_args={
        "owner": "airflow",
        "retries": 1,
    },
    description="Airbnb reviews: source -> dim -> fct_reviews -> mart -> checks",
    schedule="@daily",
    start_date=datetime(2026, 1, 1),
    catchup=False,
    params={
        "start_date": Param("", type="string"),
        "end_date": Param("", type="string"),
    },
    tags=["airbnb", "warehouse"],
) as dag:
    BashOperator(
        task_id="run_pipeline",
        bash_command=(
            f"cd '{PROJECT_ROOT}' && PYTHONPATH='{PROJECT_ROOT}:{AIRFLOW_SITE_PACKAGES}' "
            "AIRBNB_START_DATE='{{ params.start_date }}' AIRBNB_END_DATE='{{ params.end_date }}' "
            "python -m src.main run"
        ),
    )
