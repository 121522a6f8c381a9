# registrygc

A mark-and-sweep garbage collector for the storage behind a container image
registry (the `docker/registry/v2` layout), kept either in a local directory
or in an S3 bucket.

It walks every repository and every blob, marks what is still reachable from
tags and manifest revisions, and sweeps the rest: dangling tag `current`
links, old tag versions, unused manifest revision links and their signature
links, unused layer links, and unreferenced blob data. By default it is a dry
run that only counts and reports what could be removed.

## Installation

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## Usage

Point it at the registry's own configuration file. The file must declare
`version: 0.1` and exactly one of `storage.filesystem` (with
`rootdirectory`) or `storage.s3` (with `accesskey`, `secretkey`, `bucket`,
and optionally `region`, `regionendpoint` and `rootdirectory`):

```
registrygc --config /etc/docker/registry/config.yml
```

Without `--config` it prints its usage and exits with status 1. It logs a
summary line per repository (tags and tag versions, used and unused
manifests, used and unused layers and their sizes), a summary for blobs, the
totals of what is deletable, and, for S3, API call and cache counts. A CSV
report with one row per repository is written to `repositories.csv`; its
columns are `Repository, Tags, TagVersions, Manifests, ManifestsUnused,
Layers, LayersUnused, Data, DataUnused, Data-MB, DataUnused-MB`.

To actually remove data:

```
registrygc --config config.yml --delete
```

With `--soft-delete` (on by default) files are not removed but moved under a
`backup/` path in a backup tree: `docker_backup/registry/v2/` next to
`docker/` on a filesystem, `docker-backup/registry/v2/` in an S3 bucket. To
remove them outright:

```
registrygc --config config.yml --delete --soft-delete false
```

### Options

Switches may be given alone (meaning true) or followed by a value such as
`true`, `false`, `1` or `0`.

- `--config PATH` - registry configuration file (required)
- `--delete` - delete data instead of a dry run (default false)
- `--soft-delete` - move deleted files to the backup tree (default true)
- `--delete-old-tag-versions` - drop tag index entries other than the
  current one (default true); when false they keep their manifests alive
- `--ignore-blobs` - skip walking, marking and sweeping blobs (default false)
- `--jobs N` - worker threads for processing (default 10)
- `--parallel-walk-jobs N` - worker threads for parallel walks (default 10)
- `--parallel-repository-walk`, `--parallel-blob-walk` - walk each top-level
  directory in parallel (default false)
- `--soft-errors` - log errors and carry on instead of stopping (default false)
- `--debug`, `--verbose` - logging level (verbose is on by default)
- `--repository-csv-output PATH` - CSV report file (default
  `repositories.csv`; empty to skip)
- `--s3-storage-cache DIR` - local cache for objects read from S3, checked
  against their etags (default `tmp-cache`)

The command exits with status 0 on success and 1 on a configuration error,
a fatal error, or an interrupt.

## Library use

The pieces can be used on their own:

- `registrygc.digest.Digest` parses (`from_path`, `from_scoped_path`,
  `from_reference`, `decode`) and formats (`path`, `scoped_path`,
  `reference`, `etag`) `sha256` digests.
- `registrygc.storage.FilesystemStorage` and `registrygc.s3_storage.S3Storage`
  implement the `registrygc.storage.Storage` interface: `walk`, `list`,
  `read`, `delete`, `move` and `info`.
- `registrygc.config.storage_from_config` builds a storage from a
  configuration file and raises `ConfigError` when it cannot.
- `registrygc.manifest.deserialize_manifest` reads schema 1, schema 2 and
  manifest list documents and returns the digests they reference.
- `registrygc.blobs.Blobs`, `registrygc.repositories.Repositories` and
  `registrygc.deletes.Deleter` hold the walk, mark and sweep steps;
  `registrygc.jobs.JobRunner` is the thread pool they run on.

## What it does not do

- Only the `filesystem` and `s3` storage sections are understood; any other
  storage driver is reported as unsupported.
- S3 access uses static access and secret keys from the configuration file;
  no other credential sources are looked up.
- Upload directories under `_uploads` are recorded but never removed.