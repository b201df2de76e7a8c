
import json

from google.cloud import bigquery
from sitestats import Settings, SiteStats

PID = "STEzHcB1rALV"
TZ = "Europe/Kyiv"

settings = Settings(dataset_id="my-project.sitestats")
client = bigquery.Client()
stats = SiteStats(settings=settings, client=client)

time_range = stats.resolve_time_range(PID, period="7d", timezone=TZ, time_bucket="day")
filter_ = stats.compile_filters(json.dumps([{"column": "cc", "filter": "UA", "isExclusive": False}]))

chart = stats.build_chart(PID, "analytics", time_range, filter_)
print(chart.x)
print(chart.series["visits"])

breakdown = stats.request_dimensions(PID, "analytics", time_range, filter_)
print(breakdown["pg"][:5])

funnel = stats.compute_funnel(PID, time_range, steps=["/", "/pricing", "signup"])
for step in funnel:
    print(step.value, step.events, step.dropoff_perc_step)

summary = stats.compute_summary([PID], period="7d", timezone=TZ)
print(summary[PID].current, summary[PID].change)
