"""Scaffold templates for `strata init`.

A small movies project: two CSV seeds, one staging view, one dimension table
and one incremental fact table.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# project.yml / sources.yml
# ---------------------------------------------------------------------------

PROJECT_YML_TEMPLATE = """\
name: {name}
description: "Movie activity analytics, a strata sample project"

database:
  path: warehouse.duckdb

transform_dir: transform
seeds_dir: seeds

execution:
  workers: 1
  # timeout_seconds: 600
  fail_on_skipped: true

# Defaults per layer; a unit's own -- config: line wins
models:
  staging:
    materialized: view
  dimension:
    materialized: table
  fact:
    materialized: table

environments:
  dev:
    database:
      path: warehouse.duckdb
  prod:
    database:
      path: ${{STRATA_PROD_DATABASE}}
"""

SOURCES_YML_TEMPLATE = """\
sources:
  - name: raw
    schema: raw
    description: CSV files loaded by `strata seed`
    tables:
      - name: movies
        description: Movie catalogue export
        columns:
          - name: movie_id
            description: Catalogue identifier
          - name: title
            description: Display title
      - name: activity
        description: Viewing events from the player
"""

# ---------------------------------------------------------------------------
# Seeds
# ---------------------------------------------------------------------------

SAMPLE_MOVIES_CSV = """\
movie_id,title,genre,release_year
1,The Long Night,drama,2019
2,Orbit,sci-fi,2021
3,Paper Boats,comedy,2018
4,Northern Lights,documentary,2022
5,Glass Harbor,thriller,2020
"""

SAMPLE_ACTIVITY_CSV = """\
activity_id,user_id,movie_id,event_type,minutes_watched,event_ts
1001,u1,1,play,95,2024-03-01 20:15:00
1002,u2,2,play,30,2024-03-01 21:02:00
1003,u1,2,play,112,2024-03-02 19:40:00
1004,u3,3,pause,12,2024-03-02 22:10:00
1005,u2,4,play,88,2024-03-03 18:05:00
1006,u4,5,play,101,2024-03-03 20:30:00
1007,u3,1,complete,128,2024-03-04 21:45:00
"""

# ---------------------------------------------------------------------------
# Transformation units
# ---------------------------------------------------------------------------

SAMPLE_SRC_MOVIES_SQL = """\
-- description: Cleaned movie catalogue
-- col: movie_id: Catalogue identifier
-- col: title: Trimmed display title
-- assert: not_null(movie_id)
-- assert: unique(movie_id)

SELECT
    CAST(movie_id AS INTEGER) AS movie_id,
    trim(title) AS title,
    lower(genre) AS genre,
    CAST(release_year AS INTEGER) AS release_year
FROM {{ source('raw', 'movies') }}
"""

SAMPLE_DIM_MOVIES_SQL = """\
-- config: materialized=table
-- description: One row per movie
-- col: movie_id: Catalogue identifier
-- col: decade: Release decade, e.g. 2010
-- assert: not_null(movie_id)
-- assert: unique(movie_id)
-- assert: accepted_values(genre, ['drama', 'sci-fi', 'comedy', 'documentary', 'thriller'])

SELECT
    movie_id,
    title,
    genre,
    release_year,
    (release_year // 10) * 10 AS decade
FROM {{ ref('src_movies') }}
"""

SAMPLE_FCT_ACTIVITY_SQL = """\
-- config: materialized=incremental, unique_key=activity_id, watermark_column=event_ts
-- description: One row per viewing event
-- col: activity_id: Event identifier from the player
-- col: event_ts: When the event happened
-- assert: not_null(activity_id, movie_id)
-- assert: unique(activity_id)
-- assert: relationships(movie_id, dim_movies.movie_id)
-- assert: row_count > 0

SELECT
    CAST(a.activity_id AS BIGINT) AS activity_id,
    a.user_id,
    m.movie_id,
    m.title,
    a.event_type,
    CAST(a.minutes_watched AS INTEGER) AS minutes_watched,
    CAST(a.event_ts AS TIMESTAMP) AS event_ts
FROM {{ source('raw', 'activity') }} AS a
JOIN {{ ref('dim_movies') }} AS m ON m.movie_id = CAST(a.movie_id AS INTEGER)
"""

GITIGNORE_TEMPLATE = "warehouse.duckdb\nwarehouse.duckdb.wal\n__pycache__/\n.env\ndocs/\n"
