"""Tests del despachador de comandos, a través de una sesión autenticada."""

import os

import pytest

from sdftp.commands import HANDLERS, Verb
from sdftp.paths import FTP_CWD_SIZE
from sdftp.session import SessionState

from .conftest import FakeConnection, send_command


def make_file(storage, path, content=b""):
    real = storage.real_path(path)
    os.makedirs(os.path.dirname(real), exist_ok=True)
    with open(real, "wb") as f:
        f.write(content)


def run_transfer(server, ticks=50):
    for _ in range(ticks):
        if server.session.transfer is None:
            break
        server.handle_ftp()


class TestDispatchTable:
    def test_every_verb_has_a_handler(self):
        assert set(HANDLERS) == set(Verb)

    def test_unknown_command(self, server, client):
        assert send_command(server, client, "XYZ") == ["500 Unknown command"]

    def test_lowercase_commands_are_accepted(self, server, client):
        assert send_command(server, client, "noop") == ["200 Zzz..."]


class TestNavigation:
    def test_pwd_is_idempotent(self, server, client):
        first = send_command(server, client, "PWD")
        second = send_command(server, client, "PWD")
        assert first == second == ['257 "/" is your current directory']

    def test_cwd_missing_dir(self, server, client):
        assert send_command(server, client, "CWD missing_dir") == ["550 Can't open directory /"]
        assert server.session.current_dir == "/"

    def test_cwd_dot_is_pwd(self, server, client):
        assert send_command(server, client, "CWD .") == ['257 "/" is your current directory']

    def test_cwd_into_a_file_fails(self, server, client, storage):
        make_file(storage, "/file.txt")
        assert send_command(server, client, "CWD file.txt")[0].startswith("550")

    def test_cwd_without_parameter(self, server, client):
        assert send_command(server, client, "CWD") == ["501 No directory name"]

    def test_mkd_cwd_cdup_returns_to_start(self, server, client):
        send_command(server, client, "MKD base")
        send_command(server, client, "CWD base")
        before = server.session.current_dir
        assert send_command(server, client, "MKD sub") == ["200 Directory sub created"]
        assert send_command(server, client, "CWD sub") == ["250 Ok. Current directory is /base/sub"]
        assert send_command(server, client, "CDUP") == ["250 Ok. Current directory is /base"]
        assert server.session.current_dir == before

    def test_cdup_at_root(self, server, client):
        assert send_command(server, client, "CDUP") == ["250 Ok. Current directory is /"]

    def test_cwd_absolute_path_with_trailing_slash(self, server, client, storage):
        storage.mkdir("/a/b", True)
        send_command(server, client, "CWD /a/b/")
        assert server.session.current_dir == "/a/b"


class TestTransferParameters:
    @pytest.mark.parametrize("line, reply", [
        ("MODE S", "200 S Ok"),
        ("MODE B", "504 Only S(tream) is suported"),
        ("STRU F", "200 F Ok"),
        ("STRU R", "504 Only F(ile) is suported"),
        ("TYPE A", "200 TYPE is now ASCII"),
        ("TYPE I", "200 TYPE is now 8-bit binary"),
        ("TYPE E", "504 Unknown TYPE"),
    ])
    def test_replies(self, server, client, line, reply):
        assert send_command(server, client, line) == [reply]

    def test_pasv(self, server, client):
        assert send_command(server, client, "PASV") == ["227 Entering Passive Mode (192,168,1,10,195,89)."]

    def test_port(self, server, client):
        assert send_command(server, client, "PORT 10,0,0,2,4,1") == ["200 PORT command successful"]
        assert (server.session.data.ip, server.session.data.port) == ("10.0.0.2", 1025)

    def test_port_malformed(self, server, client):
        assert send_command(server, client, "PORT 10,0,0") == ["501 Can't interpret parameters"]


class TestFileCommands:
    def test_dele(self, server, client, storage):
        make_file(storage, "/gone.txt")
        assert send_command(server, client, "DELE gone.txt") == ["250 Deleted gone.txt"]
        assert not storage.exists("/gone.txt")

    def test_dele_missing(self, server, client):
        assert send_command(server, client, "DELE nope.txt") == ["550 File nope.txt not found"]

    def test_dele_directory_fails(self, server, client, storage):
        storage.mkdir("/dir", True)
        assert send_command(server, client, "DELE dir") == ["450 Can't delete dir"]

    def test_dele_without_parameter(self, server, client):
        assert send_command(server, client, "DELE") == ["501 No file name"]

    def test_path_too_long(self, server, client):
        # La línea cabe en el buffer de comandos pero la ruta absoluta no
        server.session.current_dir = "/deep" * 20
        name = "x" * (FTP_CWD_SIZE - 100)
        for verb in ("DELE", "RETR", "STOR", "SIZE", "RNFR", "MKD", "RMD", "CWD"):
            assert send_command(server, client, f"{verb} {name}") == ["500 Command line too long"]

    def test_mkd_existing_fails(self, server, client):
        send_command(server, client, "MKD dir")
        assert send_command(server, client, "MKD dir") == ['550 Can\'t create "dir"']

    def test_rmd(self, server, client, storage):
        storage.mkdir("/dir", True)
        assert send_command(server, client, "RMD dir") == ["200 Directory dir deleted"]
        assert send_command(server, client, "RMD dir") == ['501 Can\'t delete "dir"']

    def test_size(self, server, client, storage):
        make_file(storage, "/f.bin", b"x" * 1234)
        assert send_command(server, client, "SIZE f.bin") == ["213 1234"]
        assert send_command(server, client, "SIZE missing") == ["450 Can't open missing"]

    def test_static_replies(self, server, client):
        assert send_command(server, client, "MDTM f.bin") == ["550 Unable to retrieve time"]
        assert send_command(server, client, "SITE CHMOD") == ["500 Unknown SITE command CHMOD"]
        assert send_command(server, client, "LIST") == ["502 Command not implemented"]
        assert send_command(server, client, "FEAT") == [
            "211-Extensions suported:", " MLSD", " SIZE", "211 End."]


class TestRename:
    def test_rnfr_rnto_then_rnto_again(self, server, client, storage):
        make_file(storage, "/old.txt", b"data")
        assert send_command(server, client, "RNFR old.txt")[0].startswith("350")
        reply = send_command(server, client, "RNTO new.txt")
        assert reply == ["200 Rename/move of file or directory from /old.txt to /new.txt successfully"]
        assert storage.exists("/new.txt")
        assert send_command(server, client, "RNTO other.txt") == ["503 Need RNFR before RNTO"]

    def test_rnto_without_rnfr(self, server, client):
        assert send_command(server, client, "RNTO x") == ["503 Need RNFR before RNTO"]

    def test_rnfr_missing_source(self, server, client):
        assert send_command(server, client, "RNFR nope") == ["550 File nope not found"]
        assert send_command(server, client, "RNTO x") == ["503 Need RNFR before RNTO"]

    def test_failed_rnto_still_clears_source(self, server, client, storage):
        make_file(storage, "/a.txt")
        make_file(storage, "/b.txt")
        send_command(server, client, "RNFR a.txt")
        assert send_command(server, client, "RNTO b.txt") == ["553 b.txt already exists"]
        assert server.session.rename_from is None
        assert send_command(server, client, "RNTO c.txt") == ["503 Need RNFR before RNTO"]

    def test_rnto_without_parameter_clears_source(self, server, client, storage):
        make_file(storage, "/a.txt")
        send_command(server, client, "RNFR a.txt")
        assert send_command(server, client, "RNTO") == ["501 No file name"]
        assert send_command(server, client, "RNTO c.txt") == ["503 Need RNFR before RNTO"]

    def test_rename_into_missing_directory_fails(self, server, client, storage):
        make_file(storage, "/a.txt")
        send_command(server, client, "RNFR a.txt")
        assert send_command(server, client, "RNTO nodir/a.txt")[0].startswith("451")


class TestRetr:
    def test_passive_download(self, server, client, storage, passive_data):
        make_file(storage, "/existing.txt", bytes(range(100)))
        assert send_command(server, client, "PASV")[0].startswith("227")

        replies = send_command(server, client, "RETR existing.txt")
        assert replies == ["150-Connected to port 50009", "150 100 bytes to download"]
        transfer = server.session.transfer
        assert transfer is not None

        run_transfer(server)
        assert transfer.bytes_transferred == 100
        assert bytes(passive_data.outbox) == bytes(range(100))
        assert passive_data.closed
        assert any(line.startswith("226") for line in client.take_lines())

    def test_download_reports_throughput(self, server, client, storage, clock, passive_data):
        make_file(storage, "/big.bin", b"x" * 4096)
        send_command(server, client, "RETR big.bin")
        clock.advance(2)
        run_transfer(server)
        assert client.take_lines() == ["226-File successfully transferred", "226 2000 ms, 2 kbytes/s"]

    def test_missing_file(self, server, client, passive_data):
        assert send_command(server, client, "RETR nope.txt") == ["550 File nope.txt not found"]
        assert server.session.transfer is None

    def test_no_data_connection(self, server, client, storage):
        make_file(storage, "/f.txt", b"abc")
        assert send_command(server, client, "RETR f.txt") == ["425 No data connection"]
        assert server.session.transfer is None

    def test_active_mode(self, server, client, storage, connector):
        make_file(storage, "/f.txt", b"abc")
        data_conn = FakeConnection()
        connector.connections.append(data_conn)
        send_command(server, client, "PORT 10,0,0,2,4,1")
        send_command(server, client, "RETR f.txt")
        run_transfer(server)
        assert connector.calls == [("10.0.0.2", 1025)]
        assert bytes(data_conn.outbox) == b"abc"

    def test_new_retr_aborts_open_transfer(self, server, client, storage, passive_data):
        make_file(storage, "/a.bin", b"a" * 5000)
        make_file(storage, "/b.bin", b"b" * 10)
        send_command(server, client, "RETR a.bin")
        first = server.session.transfer
        server.data_listener.pending.append(FakeConnection())
        replies = send_command(server, client, "RETR b.bin")
        assert replies[0] == "426 Transfer aborted"
        assert first.file.closed
        assert server.session.transfer is not first

    def test_abor(self, server, client, storage, passive_data):
        make_file(storage, "/a.bin", b"a" * 5000)
        send_command(server, client, "RETR a.bin")
        assert send_command(server, client, "ABOR") == ["426 Transfer aborted", "226 Data connection closed"]
        assert server.session.transfer is None
        assert passive_data.closed

    def test_abor_without_transfer(self, server, client):
        assert send_command(server, client, "ABOR") == ["226 Data connection closed"]


class TestStor:
    def test_passive_upload(self, server, client, storage, passive_data):
        passive_data.feed(b"uploaded content")
        passive_data.peer_closed = True
        assert send_command(server, client, "STOR up.txt") == ["150 Connected to port 50009"]
        run_transfer(server)
        with open(storage.real_path("/up.txt"), "rb") as f:
            assert f.read() == b"uploaded content"
        assert client.take_lines()[-1].startswith("226")

    def test_upload_truncates_existing_file(self, server, client, storage, passive_data):
        make_file(storage, "/up.txt", b"old content that is longer")
        passive_data.feed(b"new")
        passive_data.peer_closed = True
        send_command(server, client, "STOR up.txt")
        run_transfer(server)
        with open(storage.real_path("/up.txt"), "rb") as f:
            assert f.read() == b"new"

    def test_cannot_create(self, server, client, passive_data):
        assert send_command(server, client, "STOR nodir/up.txt") == ["451 Can't open/create nodir/up.txt"]

    def test_no_data_connection_closes_file(self, server, client, storage):
        assert send_command(server, client, "STOR up.txt") == ["425 No data connection"]
        assert server.session.transfer is None

    def test_commands_still_processed_during_upload(self, server, client, passive_data):
        send_command(server, client, "STOR up.txt")
        assert send_command(server, client, "NOOP") == ["200 Zzz..."]
        assert server.session.transfer is not None


class TestListings:
    def test_nlst(self, server, client, storage, passive_data):
        make_file(storage, "/a.txt")
        storage.mkdir("/sub", True)
        replies = send_command(server, client, "NLST")
        assert replies == ["150 Accepted data connection", "226 2 matches total"]
        assert passive_data.lines() == ["a.txt", "sub"]
        assert passive_data.closed

    def test_nlst_missing_directory(self, server, client, passive_data):
        assert send_command(server, client, "NLST nodir") == ["550 Can't open directory nodir"]

    def test_nlst_without_data_connection(self, server, client):
        assert send_command(server, client, "NLST") == ["425 No data connection"]

    def test_mlsd(self, server, client, storage, passive_data):
        make_file(storage, "/docs/a.txt", b"12345")
        storage.mkdir("/docs/sub", True)
        send_command(server, client, "CWD docs")
        replies = send_command(server, client, "MLSD")
        assert replies == ["150 Accepted data connection", "226 MLSD completed"]
        lines = passive_data.lines()
        assert lines[0] == "Type=cdir;Perm=cmpel; /docs"
        assert lines[1] == "Type=pdir;Perm=el; "
        assert lines[2].startswith("Type=file;Size=5;modify=") and lines[2].endswith(";Perm=adfrw; a.txt")
        assert lines[3].startswith("Type=dir;modify=") and lines[3].endswith(";Perm=cpmel; sub")
        assert passive_data.closed

    def test_mlsd_without_data_connection(self, server, client):
        assert send_command(server, client, "MLSD") == ["425 No data connection MLSD"]


class TestQuit:
    def test_quit_closes_session(self, server, client):
        assert send_command(server, client, "QUIT") == ["221 Goodbye"]
        assert client.closed
        assert server.state is SessionState.DISCONNECTED
