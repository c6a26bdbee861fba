"""Crank program logic (create, trigger, cancel, close) over an in-memory account model."""