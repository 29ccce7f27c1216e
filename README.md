# mboxindex

Building blocks for indexing mail folders. The package finds messages inside
mbox files and works out which stored messages are still intact after a
folder has changed. It parses RFC 822 / MIME messages into headers and
attachments, and it reads the header and tables of an existing index
database file.

It needs Python 3.10 or later and uses only the standard library.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Modules

- `mboxindex.md5`: an MD5 implementation written in pure Python. It offers
  `MD5` (with `update`, `digest`, `hexdigest` and `copy`) and `md5_digest`.
  The package uses it for per-message checksums.
- `mboxindex.nvp`: `parse_nvp(text, prefix)` parses a structured header value
  such as `Content-Type: text/plain; charset="us-ascii"` into an `Nvp`. It
  returns `None` when the prefix does not match. An `Nvp` holds `NvpEntry`
  items, each of kind `EntryKind.NAME`, `MAJORMINOR` or `NAMEVALUE`. Its
  `major()`, `minor()` and `first()` look only at the first entry.
  `lookup()` and `lookup_case()` find parameters. `dump()` returns a text
  listing of the entries. Continued parameters such as `name*0=...` and
  `name*1=...` are joined into one value.
- `mboxindex.paths`: `glob_and_expand_paths(folder_base, paths, methods,
  omit_globs)` expands folder specs.
  - A spec may be a plain path or a path whose last component holds the
    wildcards `*` (one or more characters), `?` or `[a-z]` / `[^a-z]`.
  - A trailing `...` includes every regular file below a directory.
  - Relative specs are taken from `folder_base`.
  - Paths matching one of `omit_globs`, relative to the base, are skipped.
  - Also here: `split_on_colons`, `is_wild`, `glob_match`, and
    `TraverseMethods` / `TraverseCheck` for custom filtering.
- `mboxindex.transfer`: decodes RFC 2047 encoded words with
  `decode_header_value`. `unencode_data` decodes bodies in 7bit, 8bit,
  binary, quoted-printable, base64 and x-uuencode. `decode_encoding_type`
  returns an `Encoding`. Data in an unknown encoding is dropped and a warning
  is logged.
- `mboxindex.rfc822`: `data_to_rfc822(data, source)` turns raw message bytes
  into a `Message`.
  - A `Message` holds `Headers`, a list of `Attachment` objects and a
    `ParseStatus`.
  - `make_rfc822(path)` parses a single message file.
  - `read_mapping(path)` reads a file and transparently decompresses `.gz`
    and `.bz2` files.
  - `parse_rfc822_date` returns the Unix time of local midnight of the date
    in a `Date:` header.
  - `MsgSource.format()` describes where a message came from, for example
    `inbox[120,480)`.
- `mboxindex.mboxscan`: finds `From ` separator lines and splits an mbox into
  `MessageSpan`s.
  - A `From` line is checked for the usual
    `From [sender] weekday month day time [zone] year` shape.
  - The functions are `find_next_from`, `looks_like_from_separator` and
    `scan_messages`.
  - `find_number_intact` and `is_message_intact` check `StoredMessage`
    checksums against changed file contents.
- `mboxindex.mbox`: keeps an `MboxDatabase` in step with the mbox files on
  disk.
  - `build_mbox_lists` marks vanished mboxes dead, adds new ones and rescans
    changed ones.
  - `add_mbox_messages` parses the new messages into `MboxMessageRecord`s
    and calls the database's optional `tokeniser` callback for each one.
    When a multipart body is unterminated, it joins adjacent chunks, up to
    100 attempts.
  - `cull_dead_mboxen` drops dead mboxes and renumbers records.
  - `encode_mbox_indices`, `decode_mbox_indices` and
    `verify_mbox_size_constraints` deal with the 16-bit mbox and message
    numbering.
- `mboxindex.reader`: `open_db(filename)` validates and opens an index file
  as a `ReadDb`.
  - It checks the magic bytes, the version and the byte order.
  - The per-message, per-mbox and token tables (`TokTable`, `TokTable2`) are
    exposed as memoryviews.
  - `read_increment(data, pos)` decodes the 1-, 2- or 4-byte encoded
    increments.
  - `ReadDb` is a context manager, and `msg_type(index)` returns one of the
    `DB_MSG_*` values.

## Examples

Parse a single message file:

```python
from mboxindex.rfc822 import make_rfc822

msg = make_rfc822("cur/1234.host:2,S")
if msg is not None:
    print(msg.headers.subject, msg.headers.from_)
    for att in msg.attachments:
        print(att.content_type, att.filename)
```

Split an mbox into messages:

```python
from mboxindex.mboxscan import scan_messages

with open("inbox.mbox", "rb") as fh:
    data = fh.read()
for span in scan_messages(data, 0):
    print(span.start, span.length)
```

Bring a set of mboxes up to date and index their new messages:

```python
from mboxindex.mbox import MboxDatabase, build_mbox_lists, add_mbox_messages

db = MboxDatabase(tokeniser=lambda index, message: print(index, message.headers.subject))
build_mbox_lists(db, "/home/me/Mail", "inbox:lists/*...")
add_mbox_messages(db)
```

Decode an encoded header:

```python
from mboxindex.transfer import decode_header_value

decode_header_value("=?ISO-8859-1?Q?Caf=E9?=")  # 'Café'
```

Read an index database:

```python
from mboxindex.reader import open_db

with open_db("mail_database") as db:
    print(db.n_msgs, db.n_mboxen)
```

## Errors

Errors are raised as exceptions:

- `NvpParseError`: a structured header cannot be parsed.
- `BadHeadersError`: a message's header block fails the sanity check.
- `DatabaseFormatError`: an index file is empty, too short, or from another
  version or byte order.
- `DuplicateMboxError`: an mbox is listed more than once.
- `MboxLimitError`: there are too many mboxes or too many messages in one
  mbox.
- `OSError`: an mbox with new messages can no longer be read.

Warnings about recoverable problems go to the standard `logging` module.

## What the package does not do

- It has no command-line program.
- It does not write index database files. `mboxindex.reader` only opens and
  validates them.
- It does not tokenise messages. It hands each parsed `Message` to the
  `tokeniser` callback you supply.
- It does not run searches or produce search results.
- It does not scan maildir or MH folders. Only mbox folders are tracked, and
  `make_rfc822` parses one-message-per-file messages when given a path.