# TaskDAV
# Copyright (C) 2016-2017 Jelmer Vernooĳ <jelmer@jelmer.uk>, et al.
#
# This program is free software; you can redistribute it and/or
# modify it under the terms of the GNU General Public License
# as published by the Free Software Foundation; version 3
# of the License or (at your option) any later version of
# the License.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program; if not, write to the Free Software
# Foundation, Inc., 51 Franklin Street, Fifth Floor, Boston,
# MA  02110-1301, USA.

"""Support for tracking metrics.
"""

import time

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

request_counter = Counter(
    "requests_total", "Total Request Count", ["method", "route", "status"])

request_latency_hist = Histogram(
    "request_latency_seconds", "Request latency", ["route"])

requests_in_progress_gauge = Gauge(
    "requests_in_progress", "Requests currently in progress",
    ["method", "route"])


@web.middleware
async def metrics_middleware(request, handler):
    start_time = time.time()
    route = request.match_info.route.name
    requests_in_progress_gauge.labels(request.method, route).inc()
    try:
        response = await handler(request)
    finally:
        requests_in_progress_gauge.labels(request.method, route).dec()
    resp_time = time.time() - start_time
    request_latency_hist.labels(route).observe(resp_time)
    request_counter.labels(request.method, route, response.status).inc()
    return response


def setup_metrics(app: web.Application) -> None:
    app.router.add_get("/metrics", metrics_handler, name="metrics")


async def metrics_handler(request: web.Request) -> web.Response:
    return web.Response(
        body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})
